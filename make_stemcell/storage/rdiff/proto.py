"""rdiff delta wire format decoder.

Layout (all integers after the magic are unsigned LEB128 varints)::

    header   := magic:uint32-be  block_size:uvarint
    body     := op* [hash] [END]
    op       := 0x01 BLOCK        index
              | 0x02 BLOCK_RANGE  first last          (inclusive, last >= first)
              | 0x03 DATA         length bytes[length]
    hash     := 0x04 HASH         length(=16) md5-digest
    END      := 0x00

End of input at a record boundary ends the stream just like END. End of input
inside a record is an :class:`UnexpectedEndOfInputError`.
"""

from __future__ import annotations

import gzip
import struct
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Iterator, Optional

from ..exceptions import DeltaFormatError, UnexpectedEndOfInputError

TYPE_SIGNATURE = 0x72730136
TYPE_DELTA = 0x72730236

TAG_END = 0x00
TAG_BLOCK = 0x01
TAG_BLOCK_RANGE = 0x02
TAG_DATA = 0x03
TAG_HASH = 0x04

HASH_SIZE = 16  # md5
DEFAULT_MAX_DATA_OP = 1024 * 1024
_MAX_VARINT_BYTES = 10


class OpType(Enum):
    BLOCK = "block"
    BLOCK_RANGE = "block_range"
    DATA = "data"
    HASH = "hash"


@dataclass(frozen=True)
class Operation:
    """One decoded delta record."""

    type: OpType
    block_index: int = 0
    block_index_end: int = 0  # inclusive, BLOCK_RANGE only
    data: bytes = b""

    def __repr__(self) -> str:
        if self.type is OpType.BLOCK:
            return f"BLOCK({self.block_index})"
        if self.type is OpType.BLOCK_RANGE:
            return f"BLOCK_RANGE({self.block_index}..{self.block_index_end})"
        return f"{self.type.name}(len={len(self.data)})"


class DeltaReader:
    """Forward-only decoder over a delta byte stream."""

    def __init__(self, stream: BinaryIO, max_data_op: int = DEFAULT_MAX_DATA_OP):
        self._stream = stream
        self.max_data_op = max_data_op
        self.block_size: int | None = None
        self._seen_hash = False

    def read_header(self, expected_type: int = TYPE_DELTA) -> int:
        """Read the magic and block size; returns the block size."""
        raw = self._read_exact(4, "header")
        (magic,) = struct.unpack(">I", raw)
        if magic != expected_type:
            if magic == TYPE_SIGNATURE:
                raise DeltaFormatError("Expected a delta but found a signature file")
            raise DeltaFormatError(f"Bad delta magic: 0x{magic:08x}")
        block_size = self._read_uvarint("header")
        if block_size <= 0:
            raise DeltaFormatError(f"Invalid block size: {block_size}")
        self.block_size = block_size
        return block_size

    def operations(self) -> Iterator[Operation]:
        """Yield records in stream order, ending at END or end of input."""
        if self.block_size is None:
            raise DeltaFormatError("Delta header has not been read")
        while True:
            tag_byte = self._read_exact(1, "record", allow_eof=True)
            if tag_byte is None:
                return
            tag = tag_byte[0]
            if tag == TAG_END:
                return
            if self._seen_hash:
                raise DeltaFormatError(f"Record 0x{tag:02x} after target checksum")
            yield self._read_record(tag)

    def _read_record(self, tag: int) -> Operation:
        if tag == TAG_BLOCK:
            index = self._read_uvarint("block operation")
            return Operation(OpType.BLOCK, block_index=index)
        if tag == TAG_BLOCK_RANGE:
            first = self._read_uvarint("block range operation")
            last = self._read_uvarint("block range operation")
            if last < first:
                raise DeltaFormatError(f"Invalid block range: {first}..{last}")
            return Operation(OpType.BLOCK_RANGE, block_index=first, block_index_end=last)
        if tag == TAG_DATA:
            length = self._read_uvarint("data operation")
            if length > self.max_data_op:
                raise DeltaFormatError(
                    f"Data operation too large: {length} > {self.max_data_op}"
                )
            return Operation(OpType.DATA, data=self._read_exact(length, "data operation"))
        if tag == TAG_HASH:
            length = self._read_uvarint("checksum record")
            if length != HASH_SIZE:
                raise DeltaFormatError(f"Unexpected checksum length: {length}")
            self._seen_hash = True
            return Operation(OpType.HASH, data=self._read_exact(length, "checksum record"))
        raise DeltaFormatError(f"Unknown delta record tag: 0x{tag:02x}")

    def _read_exact(self, size: int, context: str, allow_eof: bool = False) -> Optional[bytes]:
        chunks = []
        remaining = size
        while remaining > 0:
            try:
                chunk = self._stream.read(remaining)
            except EOFError as error:
                # truncated gzip member
                raise UnexpectedEndOfInputError(context) from error
            except (gzip.BadGzipFile, zlib.error) as error:
                raise DeltaFormatError(f"Corrupt compressed delta: {error}") from error
            if not chunk:
                if allow_eof and remaining == size:
                    return None
                raise UnexpectedEndOfInputError(context)
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _read_uvarint(self, context: str) -> int:
        value = 0
        for shift in range(0, _MAX_VARINT_BYTES * 7, 7):
            byte = self._read_exact(1, context)[0]
            value |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return value
        raise DeltaFormatError(f"Varint overflow in {context}")
