"""VMX descriptor generation for ovftool.

The generated VM has a single SCSI disk and no network adapter; ovftool
turns it into the OVF that ends up in the stemcell.
"""

from __future__ import annotations

from pathlib import Path
from typing import TextIO, Union

DISK_KEY = "scsi0:0.fileName"

VMX_TEMPLATE = """.encoding = "UTF-8"
config.version = "8"
virtualHW.version = "{hardware_version}"
displayName = "{display_name}"
guestOS = "{guest_os}"
memsize = "{memory_mb}"
numvcpus = "{cpus}"
scsi0.present = "TRUE"
scsi0.virtualDev = "lsisas1068"
scsi0:0.present = "TRUE"
scsi0:0.deviceType = "scsi-hardDisk"
{disk_key} = "{disk}"
floppy0.present = "FALSE"
tools.syncTime = "TRUE"
"""


def _check_value(field: str, value: object) -> str:
    text = str(value)
    if not text:
        raise ValueError(f"VMX {field} must not be empty")
    if any(char in text for char in '"\r\n'):
        raise ValueError(f"VMX {field} contains a quote or line break: {text!r}")
    return text


def render_vmx(
    disk: str,
    *,
    display_name: str = "stemcell",
    guest_os: str = "windows8srv-64",
    memory_mb: int = 2048,
    cpus: int = 2,
    hardware_version: int = 9,
) -> str:
    """Return VMX text referencing ``disk`` (a file name next to the VMX)."""
    return VMX_TEMPLATE.format(
        disk_key=DISK_KEY,
        disk=_check_value("disk file name", disk),
        display_name=_check_value("display name", display_name),
        guest_os=_check_value("guest OS", guest_os),
        memory_mb=_check_value("memory size", memory_mb),
        cpus=_check_value("vCPU count", cpus),
        hardware_version=_check_value("hardware version", hardware_version),
    )


def write_vmx(disk: str, stream: TextIO, **options) -> None:
    stream.write(render_vmx(disk, **options))


def create_vmx(vmx_path: Union[str, Path], disk: Union[str, Path], **options) -> Path:
    """Write a new VMX at ``vmx_path``; ``disk`` is referenced by file name."""
    vmx_path = Path(vmx_path)
    with open(vmx_path, "x", encoding="utf-8") as handle:
        write_vmx(Path(disk).name, handle, **options)
    return vmx_path
