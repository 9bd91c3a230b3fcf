"""Stemcell build pipeline.

Drives one build through its stages::

    IDLE -> WORKSPACE_READY -> PATCHED -> DESCRIBED -> CONVERTED
         -> PACKAGED -> PUBLISHED

Any failure, including cancellation, moves the pipeline to ABORTED and
removes its workspace. The only exception is a failed publish, which keeps
the finished package in the workspace so the operator can recover it.

Usage:
    pipeline = StemcellPipeline(config, token)
    stemcell = pipeline.run(vhd, delta)
"""

from __future__ import annotations

import errno
import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from make_stemcell.config.settings import StemcellConfig
from make_stemcell.domain.models import PipelineState, StemcellManifest
from make_stemcell.logging import LoggerFactory, operation_context
from make_stemcell.storage import stemcell
from make_stemcell.storage.cancel import CancellationToken
from make_stemcell.storage.exceptions import (
    ElementNotFoundError,
    InvariantViolation,
    OperationInterruptedError,
    PublishError,
)
from make_stemcell.storage.ova import (
    convert_vmx_to_ova,
    create_ova,
    create_vmx,
    extract_ova,
    list_archive_names,
    strip_device,
    validate_ovf_names,
)
from make_stemcell.storage.rdiff import PatchResult, patch_file

from .workspace import Workspace

IMAGE_VMDK = "image.vmdk"
IMAGE_VMX = "image.vmx"
IMAGE_OVA = "image.ova"
EDITED_OVA = "image-edited.ova"
OVF_DIR = "ovf"

Converter = Callable[[Path, Path], object]


class StemcellPipeline:
    """One stemcell build, from VHD + delta to a published tgz."""

    def __init__(
        self,
        config: StemcellConfig,
        token: Optional[CancellationToken] = None,
        converter: Optional[Converter] = None,
    ):
        self.config = config
        self.token = token or CancellationToken()
        self.converter = converter or self._run_ovftool
        self.log = LoggerFactory.for_pipeline()
        self.state = PipelineState.IDLE
        self._workspace = Workspace(parent=config.temp_dir)

        self.patch_result: Optional[PatchResult] = None
        self.image_vmdk: Optional[Path] = None
        self.vmx_path: Optional[Path] = None
        self.ova_path: Optional[Path] = None
        self.image_path: Optional[Path] = None
        self.image_sha1: Optional[str] = None
        self.manifest_path: Optional[Path] = None
        self.package_path: Optional[Path] = None
        self.published_path: Optional[Path] = None

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    def _require(self, state: PipelineState, stage: str) -> None:
        if self.state is not state:
            raise InvariantViolation(
                f"{stage}: pipeline is {self.state.value}, expected {state.value}"
            )

    @contextmanager
    def _stage(self, stage: str, required: PipelineState, reached: PipelineState) -> Iterator[None]:
        self._require(required, stage)
        self.log.debug(f"Stage {stage} started")
        try:
            self.token.check()
            yield
        except OperationInterruptedError as error:
            self.log.warning(f"Stage {stage} cancelled: {error}")
            self.abort()
            raise
        except BaseException:
            self.abort()
            raise
        self.state = reached
        self.log.info(f"Stage {stage} finished: {reached.value}")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def workspace(self) -> Path:
        """Return the workspace directory, creating it on first call."""
        if self.state is PipelineState.IDLE:
            with self._stage("workspace", PipelineState.IDLE, PipelineState.WORKSPACE_READY):
                path = self._workspace.path
                self.log.debug(f"Workspace: {path}")
            return path
        if self.state is PipelineState.ABORTED:
            raise InvariantViolation("workspace: pipeline was aborted")
        return self._workspace.path

    def patch(self, vhd: Union[str, Path], delta: Union[str, Path]) -> Path:
        """Apply ``delta`` to ``vhd``, producing ``image.vmdk``."""
        with self._stage("patch", PipelineState.WORKSPACE_READY, PipelineState.PATCHED):
            target = self.workspace() / IMAGE_VMDK
            self.patch_result = patch_file(
                vhd,
                delta,
                target,
                verify=self.config.verify_patch,
                gzip_delta=self.config.gzip_delta,
                token=self.token,
            )
            self.image_vmdk = target
        return target

    def describe(self) -> Path:
        """Write the VMX descriptor for the patched image."""
        with self._stage("describe", PipelineState.PATCHED, PipelineState.DESCRIBED):
            if self.image_vmdk is None:
                raise InvariantViolation("describe: patched image is not set")
            self.vmx_path = create_vmx(self.workspace() / IMAGE_VMX, self.image_vmdk)
        return self.vmx_path

    def convert(self) -> Path:
        """Convert the VMX into an OVA with ovftool."""
        with self._stage("convert", PipelineState.DESCRIBED, PipelineState.CONVERTED):
            if self.vmx_path is None:
                raise InvariantViolation("convert: VMX descriptor is not set")
            ova = self.workspace() / IMAGE_OVA
            self.converter(self.vmx_path, ova)
            self.token.check()
            self.ova_path = ova
        return ova

    def package(self) -> Path:
        """Build the stemcell tgz in the workspace."""
        with self._stage("package", PipelineState.CONVERTED, PipelineState.PACKAGED):
            if self.ova_path is None:
                raise InvariantViolation("package: OVA is not set")
            ova = self._prepare_ova(self.ova_path)

            workspace = self.workspace()
            self.image_path = workspace / stemcell.IMAGE_NAME
            self.image_sha1 = stemcell.compress_image(ova, self.image_path, token=self.token)

            manifest = StemcellManifest(
                name=self.config.manifest_name,
                version=self.config.version,
                sha1=self.image_sha1,
                operating_system=self.config.operating_system,
                infrastructure=self.config.infrastructure,
                hypervisor=self.config.hypervisor,
            )
            self.manifest_path = stemcell.write_manifest(
                manifest, workspace / stemcell.MANIFEST_NAME
            )
            self.package_path = stemcell.create_stemcell(
                self.image_path,
                self.manifest_path,
                workspace / self.config.stemcell_filename,
                token=self.token,
            )
        return self.package_path

    def _prepare_ova(self, ova: Path) -> Path:
        """Validate the OVA and strip the configured device from it."""
        device = self.config.strip_device
        max_entries = self.config.max_archive_entries
        if not device:
            validate_ovf_names(list_archive_names(ova, max_entries=max_entries), str(ova))
            return ova

        directory = self.workspace() / OVF_DIR
        directory.mkdir()
        names = extract_ova(ova, directory, max_entries=max_entries, token=self.token)
        validate_ovf_names(names, str(ova))
        try:
            strip_device(directory, device)
        except ElementNotFoundError:
            self.log.info(f"OVF has no {device} device, nothing to strip")
            return ova

        edited = self.workspace() / EDITED_OVA
        create_ova(directory, edited, token=self.token)
        return edited

    def publish(self) -> Path:
        """Move the stemcell into the output directory.

        Raises:
            PublishError: The destination exists or the move failed. The
                package stays in the workspace and the pipeline stays
                PACKAGED.
        """
        self._require(PipelineState.PACKAGED, "publish")
        self.token.check()
        if self.package_path is None:
            raise InvariantViolation("publish: stemcell package is not set")

        destination = self.config.stemcell_path
        _move_into_place(self.package_path, destination)
        self.published_path = destination
        self.state = PipelineState.PUBLISHED
        self.log.success(f"Published stemcell: {destination}")
        self._workspace.cleanup()
        return destination

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def abort(self) -> None:
        """Move to ABORTED and delete the workspace. Idempotent."""
        if self.state is PipelineState.PUBLISHED:
            return
        if self.state is not PipelineState.ABORTED:
            self.log.warning(f"Aborting pipeline in state {self.state.value}")
            self.state = PipelineState.ABORTED
        self.cleanup()

    def cleanup(self) -> None:
        """Delete the workspace. Idempotent."""
        if self._workspace.cleanup():
            self.log.debug("Workspace removed")

    @property
    def workspace_path(self) -> Optional[Path]:
        """Workspace directory if it was created, even if since removed."""
        return self._workspace.location

    # ------------------------------------------------------------------
    # Whole run
    # ------------------------------------------------------------------

    def run(self, vhd: Union[str, Path], delta: Union[str, Path]) -> Path:
        """Run every stage and return the published stemcell path."""
        with operation_context("stemcell", version=self.config.version) as log:
            try:
                self.workspace()
                log.debug(f"Workspace: {self.workspace_path}")
                self.patch(vhd, delta)
                self.describe()
                self.convert()
                self.package()
                return self.publish()
            except PublishError:
                log.error(f"Stemcell kept for recovery: {self.package_path}")
                raise
            except BaseException:
                self.abort()
                raise

    def _run_ovftool(self, vmx: Path, ova: Path) -> str:
        return convert_vmx_to_ova(vmx, ova, ovftool=self.config.ovftool_path, token=self.token)


def _move_into_place(source: Path, destination: Path) -> None:
    """Move ``source`` to ``destination``, never replacing an existing file.

    The destination name is claimed with a hard link, which fails if the name
    is taken; the source name is dropped afterwards.
    """
    try:
        os.link(source, destination)
    except FileExistsError as error:
        raise PublishError(str(source), str(destination), "destination already exists") from error
    except OSError as error:
        if error.errno != errno.EXDEV:
            raise PublishError(str(source), str(destination), str(error)) from error
        _copy_into_place(source, destination)
    source.unlink()


def _copy_into_place(source: Path, destination: Path) -> None:
    # Different filesystem: copy next to the destination, then link it in
    partial = destination.with_name(f".{destination.name}.partial")
    try:
        shutil.copyfile(source, partial)
        os.link(partial, destination)
    except FileExistsError as error:
        raise PublishError(str(source), str(destination), "destination already exists") from error
    except OSError as error:
        raise PublishError(str(source), str(destination), str(error)) from error
    finally:
        partial.unlink(missing_ok=True)
