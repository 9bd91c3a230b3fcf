"""Domain model for stemcell builds.

Type-safe objects shared by the pipeline stages: the pipeline state machine,
and the stemcell manifest that ends up in ``stemcell.MF``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# ==============================================================================
# Pipeline Domain
# ==============================================================================


class PipelineState(Enum):
    """Stages of one stemcell build.

    Stages only move forward; ABORTED is reachable from every non-terminal
    state and is terminal itself.
    """

    IDLE = "idle"
    WORKSPACE_READY = "workspace_ready"
    PATCHED = "patched"
    DESCRIBED = "described"
    CONVERTED = "converted"
    PACKAGED = "packaged"
    PUBLISHED = "published"
    ABORTED = "aborted"


# ==============================================================================
# Stemcell Domain
# ==============================================================================


MANIFEST_TEMPLATE = """---
name: {name}
version: {version}
sha1: {sha1}
operating_system: {operating_system}
cloud_properties:
  infrastructure: {infrastructure}
  hypervisor: {hypervisor}
"""


@dataclass(frozen=True)
class StemcellManifest:
    """Contents of ``stemcell.MF``."""

    name: str  # e.g., "bosh-vsphere-esxi-windows-2012R2-go_agent"
    version: str  # e.g., "1200.3"
    sha1: str  # hex SHA1 of the stemcell image file
    operating_system: str = "windows2012R2"
    infrastructure: str = "vsphere"
    hypervisor: str = "esxi"

    def render(self) -> str:
        """Format the manifest text. Pure: no I/O, no validation beyond fields."""
        return MANIFEST_TEMPLATE.format(
            name=self.name,
            version=self.version,
            sha1=self.sha1,
            operating_system=self.operating_system,
            infrastructure=self.infrastructure,
            hypervisor=self.hypervisor,
        )


def stemcell_filename(name: str, version: str, platform: str) -> str:
    """Published artifact name, ``<name>-<version>-<platform>.tgz``.

    >>> stemcell_filename("bosh-stemcell", "1.2", "vsphere-esxi-windows2012R2-go_agent")
    'bosh-stemcell-1.2-vsphere-esxi-windows2012R2-go_agent.tgz'
    """
    return f"{name}-{version}-{platform}.tgz"
