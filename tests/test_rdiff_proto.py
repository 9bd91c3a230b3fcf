"""Tests for the rdiff delta decoder."""

import io
import struct

import pytest

from make_stemcell.storage.exceptions import DeltaFormatError, UnexpectedEndOfInputError
from make_stemcell.storage.rdiff.proto import (
    HASH_SIZE,
    TYPE_SIGNATURE,
    DeltaReader,
    OpType,
)


def decode(data: bytes, **kwargs):
    reader = DeltaReader(io.BytesIO(data), **kwargs)
    block_size = reader.read_header()
    return block_size, list(reader.operations())


class TestHeader:
    """Tests for DeltaReader.read_header()."""

    def test_reads_block_size(self, delta_builder):
        reader = DeltaReader(io.BytesIO(delta_builder(2048, [])))
        assert reader.read_header() == 2048
        assert reader.block_size == 2048

    @pytest.mark.parametrize("length", [0, 2, 4])
    def test_truncated_header(self, delta_builder, length):
        """Test a short header is reported as truncation, not bad format."""
        data = delta_builder(300, [])[:length]
        with pytest.raises(UnexpectedEndOfInputError):
            DeltaReader(io.BytesIO(data)).read_header()

    def test_signature_file_rejected(self, delta_builder):
        data = delta_builder(4, [], magic=TYPE_SIGNATURE)
        with pytest.raises(DeltaFormatError, match="signature"):
            DeltaReader(io.BytesIO(data)).read_header()

    def test_bad_magic_rejected(self):
        data = struct.pack(">I", 0xDEADBEEF) + b"\x04"
        with pytest.raises(DeltaFormatError) as exc_info:
            DeltaReader(io.BytesIO(data)).read_header()
        assert not isinstance(exc_info.value, UnexpectedEndOfInputError)

    def test_zero_block_size_rejected(self, delta_builder):
        with pytest.raises(DeltaFormatError, match="block size"):
            DeltaReader(io.BytesIO(delta_builder(0, []))).read_header()

    def test_operations_require_header(self):
        reader = DeltaReader(io.BytesIO(b""))
        with pytest.raises(DeltaFormatError):
            list(reader.operations())


class TestOperations:
    """Tests for DeltaReader.operations()."""

    def test_decodes_each_record_type(self, delta_builder):
        digest = b"\x01" * HASH_SIZE
        data = delta_builder(
            4, [("block", 2), ("range", 0, 1), ("data", b"xyz")], checksum=digest
        )
        _, ops = decode(data)

        assert [op.type for op in ops] == [
            OpType.BLOCK,
            OpType.BLOCK_RANGE,
            OpType.DATA,
            OpType.HASH,
        ]
        assert ops[0].block_index == 2
        assert (ops[1].block_index, ops[1].block_index_end) == (0, 1)
        assert ops[2].data == b"xyz"
        assert ops[3].data == digest

    def test_large_varints(self, delta_builder):
        _, ops = decode(delta_builder(1 << 20, [("block", 300), ("range", 128, 70000)]))
        assert ops[0].block_index == 300
        assert ops[1].block_index_end == 70000

    def test_end_of_input_at_record_boundary_ends_stream(self, delta_builder):
        _, ops = decode(delta_builder(4, [("block", 0)], end=False))
        assert len(ops) == 1

    def test_end_record_stops_decoding(self, delta_builder):
        data = delta_builder(4, [("block", 0)]) + b"\xff\xff"
        _, ops = decode(data)
        assert len(ops) == 1

    @pytest.mark.parametrize("cut", [1, 2, 4])
    def test_truncated_data_record(self, delta_builder, cut):
        data = delta_builder(4, [("data", b"abcd")], end=False)[:-cut]
        with pytest.raises(UnexpectedEndOfInputError):
            decode(data)

    def test_truncated_checksum_record(self, delta_builder):
        data = delta_builder(4, [], checksum=b"\x00" * HASH_SIZE, end=False)[:-3]
        with pytest.raises(UnexpectedEndOfInputError):
            decode(data)

    def test_unknown_tag(self, delta_builder):
        data = delta_builder(4, [], end=False) + b"\x7f"
        with pytest.raises(DeltaFormatError, match="0x7f"):
            decode(data)

    def test_record_after_checksum_rejected(self, delta_builder):
        data = delta_builder(4, [], checksum=b"\x00" * HASH_SIZE, end=False)
        data += delta_builder(4, [("block", 0)], end=False)[5:]
        with pytest.raises(DeltaFormatError, match="after target checksum"):
            decode(data)

    def test_reversed_block_range_rejected(self, delta_builder):
        with pytest.raises(DeltaFormatError, match="range"):
            decode(delta_builder(4, [("range", 3, 1)]))

    def test_wrong_checksum_length_rejected(self, delta_builder):
        with pytest.raises(DeltaFormatError, match="checksum length"):
            decode(delta_builder(4, [], checksum=b"\x00" * 20))

    def test_oversized_data_record_rejected(self, delta_builder):
        with pytest.raises(DeltaFormatError, match="too large"):
            decode(delta_builder(4, [("data", b"x" * 9)]), max_data_op=8)

    def test_operation_repr(self, delta_builder):
        _, ops = decode(delta_builder(4, [("block", 5), ("range", 1, 2), ("data", b"ab")]))
        assert [repr(op) for op in ops] == ["BLOCK(5)", "BLOCK_RANGE(1..2)", "DATA(len=2)"]
