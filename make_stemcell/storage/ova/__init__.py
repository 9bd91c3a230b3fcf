"""OVA/OVF handling: archive extraction, descriptor editing, ovftool."""

from .archive import (
    create_ova,
    extract_archive,
    extract_ova,
    list_archive_names,
    validate_ovf_names,
)
from .ovf import refresh_manifest_digest, remove_item_block, strip_device
from .ovftool import convert_vmx_to_ova, find_ovftool
from .vmx import create_vmx, render_vmx

__all__ = [
    "convert_vmx_to_ova",
    "create_ova",
    "create_vmx",
    "extract_archive",
    "extract_ova",
    "find_ovftool",
    "list_archive_names",
    "refresh_manifest_digest",
    "remove_item_block",
    "render_vmx",
    "strip_device",
    "validate_ovf_names",
]
