"""
Pytest configuration and shared fixtures for make-stemcell tests.

This module provides builders for delta streams, tar archives and OVF
documents used across the test modules.
"""

import hashlib
import io
import struct
import tarfile
from pathlib import Path
from typing import Callable, Iterable, Optional

import pytest
from loguru import logger

from make_stemcell.config.settings import StemcellConfig
from make_stemcell.storage.rdiff.proto import (
    TAG_BLOCK,
    TAG_BLOCK_RANGE,
    TAG_DATA,
    TAG_END,
    TAG_HASH,
    TYPE_DELTA,
)


@pytest.fixture(autouse=True)
def reset_loguru():
    """Drop any sinks a test (or setup_logging) installed."""
    yield
    logger.remove()


# ==============================================================================
# Delta Builders
# ==============================================================================


def encode_uvarint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_delta(
    block_size: int,
    ops: Iterable[tuple],
    checksum: Optional[bytes] = None,
    end: bool = True,
    magic: int = TYPE_DELTA,
) -> bytes:
    """
    Encode a delta stream.

    Args:
        block_size: Block size declared in the header
        ops: ("block", i), ("range", first, last) or ("data", bytes) tuples
        checksum: 16-byte MD5 digest record, omitted when None
        end: Append an END record
        magic: Header type tag
    """
    out = bytearray(struct.pack(">I", magic))
    out += encode_uvarint(block_size)
    for op in ops:
        kind = op[0]
        if kind == "block":
            out.append(TAG_BLOCK)
            out += encode_uvarint(op[1])
        elif kind == "range":
            out.append(TAG_BLOCK_RANGE)
            out += encode_uvarint(op[1]) + encode_uvarint(op[2])
        elif kind == "data":
            out.append(TAG_DATA)
            out += encode_uvarint(len(op[1])) + op[1]
        else:
            raise ValueError(kind)
    if checksum is not None:
        out.append(TAG_HASH)
        out += encode_uvarint(len(checksum)) + checksum
    if end:
        out.append(TAG_END)
    return bytes(out)


@pytest.fixture
def delta_builder() -> Callable[..., bytes]:
    """Fixture returning :func:`encode_delta`."""
    return encode_delta


@pytest.fixture
def basis_bytes() -> bytes:
    """Three 4-byte blocks."""
    return b"AAAABBBBCCCC"


@pytest.fixture
def basis_file(tmp_path, basis_bytes) -> Path:
    path = tmp_path / "base.vhd"
    path.write_bytes(basis_bytes)
    return path


@pytest.fixture
def delta_file(tmp_path) -> Callable[[bytes], Path]:
    """Fixture writing delta bytes to a file and returning its path."""

    def write(data: bytes, name: str = "patch.rdiff") -> Path:
        path = tmp_path / name
        path.write_bytes(data)
        return path

    return write


# ==============================================================================
# Archive Builders
# ==============================================================================


def build_tar(entries: Iterable[tuple]) -> bytes:
    """
    Build an uncompressed tar archive in memory.

    Args:
        entries: (name, data) for regular files, or (name, data, type, mode)
            where type is a tarfile type constant and data is the link target
            for link entries
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.USTAR_FORMAT) as archive:
        for entry in entries:
            name, data = entry[0], entry[1]
            kind = entry[2] if len(entry) > 2 else tarfile.REGTYPE
            mode = entry[3] if len(entry) > 3 else 0o644
            info = tarfile.TarInfo(name)
            info.type = kind
            info.mode = mode
            if kind == tarfile.REGTYPE:
                info.size = len(data)
                archive.addfile(info, io.BytesIO(data))
            else:
                if kind in (tarfile.SYMTYPE, tarfile.LNKTYPE):
                    info.linkname = data.decode()
                archive.addfile(info)
    return buffer.getvalue()


@pytest.fixture
def tar_builder() -> Callable[[Iterable[tuple]], bytes]:
    """Fixture returning :func:`build_tar`."""
    return build_tar


SAMPLE_OVF = """<?xml version="1.0" encoding="UTF-8"?>
<Envelope vmw:buildId="build-3018523" xmlns="http://schemas.dmtf.org/ovf/envelope/1" xmlns:rasd="http://schemas.dmtf.org/wbem/wscim/1/cim-schema/2/CIM_ResourceAllocationSettingData" xmlns:vmw="http://www.vmware.com/schema/ovf">
  <VirtualSystem ovf:id="vm">
    <VirtualHardwareSection>
      <Item>
        <rasd:Address>0</rasd:Address>
        <rasd:Description>SCSI Controller</rasd:Description>
        <rasd:ElementName>scsiController0</rasd:ElementName>
        <rasd:InstanceID>3</rasd:InstanceID>
        <rasd:ResourceSubType>lsilogicsas</rasd:ResourceSubType>
        <rasd:ResourceType>6</rasd:ResourceType>
      </Item>
      <Item>
        <rasd:AddressOnParent>7</rasd:AddressOnParent>
        <rasd:AutomaticAllocation>true</rasd:AutomaticAllocation>
        <rasd:Connection>VM Network</rasd:Connection>
        <rasd:Description>E1000 ethernet adapter on &quot;VM Network&quot;</rasd:Description>
        <rasd:ElementName>ethernet0</rasd:ElementName>
        <rasd:InstanceID>9</rasd:InstanceID>
        <rasd:ResourceSubType>E1000</rasd:ResourceSubType>
        <rasd:ResourceType>10</rasd:ResourceType>
      </Item>
      <Item ovf:required="false">
        <rasd:AutomaticAllocation>false</rasd:AutomaticAllocation>
        <rasd:ElementName>video</rasd:ElementName>
        <rasd:InstanceID>10</rasd:InstanceID>
        <rasd:ResourceType>24</rasd:ResourceType>
      </Item>
    </VirtualHardwareSection>
  </VirtualSystem>
</Envelope>
"""


@pytest.fixture
def sample_ovf() -> str:
    """OVF descriptor with one ethernet0 block among others."""
    return SAMPLE_OVF


def build_ova(ovf: str = SAMPLE_OVF, with_manifest: bool = True, disk: bytes = b"disk") -> bytes:
    """OVA bytes holding image.ovf, optionally image.mf, and image-disk1.vmdk."""
    ovf_bytes = ovf.encode("utf-8")
    entries = [("image.ovf", ovf_bytes)]
    if with_manifest:
        manifest = (
            f"SHA1(image.ovf)= {hashlib.sha1(ovf_bytes).hexdigest()}\n"
            f"SHA1(image-disk1.vmdk)= {hashlib.sha1(disk).hexdigest()}\n"
        )
        entries.append(("image.mf", manifest.encode("utf-8")))
    entries.append(("image-disk1.vmdk", disk))
    return build_tar(entries)


@pytest.fixture
def ova_builder() -> Callable[..., bytes]:
    """Fixture returning :func:`build_ova`."""
    return build_ova


# ==============================================================================
# Pipeline Fixtures
# ==============================================================================


@pytest.fixture
def output_dir(tmp_path) -> Path:
    path = tmp_path / "out"
    path.mkdir()
    return path


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    """Parent directory for pipeline workspaces, so tests can inspect it."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def stemcell_config(output_dir, scratch_dir) -> StemcellConfig:
    return StemcellConfig.from_settings("1200.3", output_dir, temp_dir=scratch_dir)


@pytest.fixture
def fake_converter() -> Callable[[Path, Path], None]:
    """Stand-in for ovftool that writes a small OVA next to the VMX."""

    def convert(vmx: Path, ova: Path) -> None:
        assert vmx.is_file()
        ova.write_bytes(build_ova())

    return convert


@pytest.fixture
def temp_settings_file(tmp_path) -> Path:
    """
    Fixture providing a temporary settings file path.

    Args:
        tmp_path: pytest's built-in temporary directory fixture.

    Returns:
        Path to temporary settings.json file.
    """
    return tmp_path / "settings.json"
