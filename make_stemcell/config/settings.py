"""Settings storage for stemcell build configuration.

Defaults can be overridden from a JSON settings file; the merged values are
frozen into a :class:`StemcellConfig` that is handed to the pipeline. Nothing
here is module-level mutable state.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from make_stemcell.domain.models import stemcell_filename

SETTINGS_PATH = Path(
    os.environ.get(
        "MAKE_STEMCELL_SETTINGS_PATH",
        Path.home() / ".config" / "make-stemcell" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_MAX_ARCHIVE_ENTRIES = 100
DEFAULT_STRIP_DEVICE = "ethernet0"

DEFAULT_SETTINGS: dict[str, Any] = {
    "stemcell_name": "bosh-stemcell",
    "platform": "vsphere-esxi-windows2012R2-go_agent",
    "manifest_name": "bosh-vsphere-esxi-windows-2012R2-go_agent",
    "operating_system": "windows2012R2",
    "infrastructure": "vsphere",
    "hypervisor": "esxi",
    "gzip_delta": False,
    "verify_patch": True,
    "strip_device": DEFAULT_STRIP_DEVICE,
    "max_archive_entries": DEFAULT_MAX_ARCHIVE_ENTRIES,
    "ovftool_path": None,
    "temp_dir": None,
}


def load_settings(path: Path | None = None) -> dict[str, Any]:
    """Return defaults merged with the JSON settings file, if it is readable."""
    values = dict(DEFAULT_SETTINGS)
    path = path or SETTINGS_PATH
    if not path.exists():
        return values
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return values
    if isinstance(data, dict):
        values.update({key: value for key, value in data.items() if key in DEFAULT_SETTINGS})
    return values


@dataclass(frozen=True)
class StemcellConfig:
    """Immutable configuration for one pipeline run."""

    version: str
    output_dir: Path = field(default_factory=Path.cwd)
    stemcell_name: str = DEFAULT_SETTINGS["stemcell_name"]
    platform: str = DEFAULT_SETTINGS["platform"]
    manifest_name: str = DEFAULT_SETTINGS["manifest_name"]
    operating_system: str = DEFAULT_SETTINGS["operating_system"]
    infrastructure: str = DEFAULT_SETTINGS["infrastructure"]
    hypervisor: str = DEFAULT_SETTINGS["hypervisor"]
    gzip_delta: bool = False
    verify_patch: bool = True
    strip_device: str | None = DEFAULT_STRIP_DEVICE
    max_archive_entries: int = DEFAULT_MAX_ARCHIVE_ENTRIES
    ovftool_path: str | None = None
    temp_dir: Path | None = None

    @classmethod
    def from_settings(
        cls,
        version: str,
        output_dir: str | Path | None = None,
        settings: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> StemcellConfig:
        """Build a config from a settings dict plus explicit overrides."""
        values = dict(DEFAULT_SETTINGS if settings is None else settings)
        values.update(overrides)
        known = {f.name for f in fields(cls)}
        kwargs = {key: value for key, value in values.items() if key in known}
        if kwargs.get("temp_dir") is not None:
            kwargs["temp_dir"] = Path(kwargs["temp_dir"]).expanduser()
        resolved_output = Path(output_dir).expanduser() if output_dir else Path.cwd()
        return cls(version=version, output_dir=resolved_output, **kwargs)

    @property
    def stemcell_filename(self) -> str:
        return stemcell_filename(self.stemcell_name, self.version, self.platform)

    @property
    def stemcell_path(self) -> Path:
        return self.output_dir / self.stemcell_filename
