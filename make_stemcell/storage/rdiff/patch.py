"""Apply an rdiff delta to a basis file.

Decoding and applying run concurrently: a decoder thread feeds operations
through a small bounded queue to the applier (the calling thread), and hands
the target checksum over through a one-shot future. The future is always
resolved before the decoder exits, so the applier never blocks on it.
"""

from __future__ import annotations

import gzip
import hashlib
import os
import queue
import threading
from concurrent.futures import Future
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Union

from make_stemcell.logging import LoggerFactory, get_logger

from ..cancel import CancellationToken
from ..exceptions import (
    ChecksumMismatchError,
    DeltaFormatError,
    FileConflictError,
    MissingChecksumError,
)
from .proto import DEFAULT_MAX_DATA_OP, DeltaReader, OpType

log = get_logger(source=__name__, tags=["rdiff"])
chunk_log = get_logger(source=__name__, tags=["rdiff", "chunk"])

OPERATION_QUEUE_SIZE = 2
_PUT_POLL_INTERVAL = 0.05
_END_OF_OPERATIONS = object()


@dataclass(frozen=True)
class PatchResult:
    """Summary of a successful patch."""

    block_size: int
    operations: int
    bytes_written: int
    md5: Optional[str]  # hex digest of the output, None when not verified


class _DecodeTask(threading.Thread):
    """Reads delta records and hands them to the applier."""

    def __init__(self, reader: DeltaReader, operations: queue.Queue):
        super().__init__(name="rdiff-decode", daemon=True)
        self.reader = reader
        self.operations = operations
        self.checksum: Future = Future()
        self.abandoned = threading.Event()
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            for op in self.reader.operations():
                if op.type is OpType.HASH:
                    self.checksum.set_result(op.data)
                    continue
                if not self._put(op):
                    return
        except Exception as error:
            self.error = error
        finally:
            if not self.checksum.done():
                self.checksum.set_result(None)
            self._put(_END_OF_OPERATIONS)

    def _put(self, item) -> bool:
        while not self.abandoned.is_set():
            try:
                self.operations.put(item, timeout=_PUT_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False


def apply_patch(
    basis: BinaryIO,
    delta: BinaryIO,
    target: BinaryIO,
    verify: bool = True,
    *,
    max_data_op: int = DEFAULT_MAX_DATA_OP,
) -> PatchResult:
    """Reconstruct ``target`` from ``basis`` and ``delta``.

    Args:
        basis: Seekable readable stream with the prior version
        delta: Forward-only delta stream
        target: Writable stream receiving the output
        verify: Require the delta's target checksum and compare it (MD5)
        max_data_op: Largest literal record accepted from the delta

    Returns:
        PatchResult describing the reconstructed output

    Raises:
        UnexpectedEndOfInputError: Delta ended inside the header or a record
        DeltaFormatError: Delta is malformed or references blocks past the basis
        MissingChecksumError: verify=True and the delta has no checksum record
        ChecksumMismatchError: verify=True and the output digest differs
        OperationInterruptedError: A wrapped stream was cancelled
    """
    reader = DeltaReader(delta, max_data_op=max_data_op)
    block_size = reader.read_header()
    log.debug(f"Delta block size: {block_size}")

    operations: queue.Queue = queue.Queue(maxsize=OPERATION_QUEUE_SIZE)
    decoder = _DecodeTask(reader, operations)
    hasher = hashlib.md5() if verify else None

    decoder.start()
    try:
        count, written = _apply_operations(operations, basis, target, block_size, hasher)
    finally:
        # Releases a decoder still waiting on a full queue after an apply error
        decoder.abandoned.set()
        decoder.join()

    if decoder.error is not None:
        raise decoder.error

    # Always drained, even when unverified
    expected = decoder.checksum.result()
    if not verify:
        return PatchResult(block_size, count, written, None)
    if expected is None:
        raise MissingChecksumError()
    actual = hasher.digest()
    if expected != actual:
        raise ChecksumMismatchError(expected.hex(), actual.hex())
    log.debug(f"Patched output verified: md5 {actual.hex()}")
    return PatchResult(block_size, count, written, actual.hex())


def _apply_operations(
    operations: queue.Queue,
    basis: BinaryIO,
    target: BinaryIO,
    block_size: int,
    hasher,
) -> tuple[int, int]:
    count = 0
    written = 0
    while True:
        op = operations.get()
        if op is _END_OF_OPERATIONS:
            return count, written
        chunk_log.trace(f"apply {op!r}")
        count += 1
        if op.type is OpType.DATA:
            written += _write(target, op.data, hasher)
        elif op.type is OpType.BLOCK:
            written += _copy_block(basis, target, op.block_index, block_size, hasher)
        elif op.type is OpType.BLOCK_RANGE:
            for index in range(op.block_index, op.block_index_end + 1):
                written += _copy_block(basis, target, index, block_size, hasher)
        else:
            raise DeltaFormatError(f"Unexpected operation: {op!r}")


def _copy_block(basis: BinaryIO, target: BinaryIO, index: int, block_size: int, hasher) -> int:
    basis.seek(index * block_size)
    data = basis.read(block_size)
    if not data:
        raise DeltaFormatError(f"Block {index} is past the end of the basis")
    return _write(target, data, hasher)


def _write(target: BinaryIO, data: bytes, hasher) -> int:
    target.write(data)
    if hasher is not None:
        hasher.update(data)
    return len(data)


def patch_file(
    basis_path: Union[str, Path],
    delta_path: Union[str, Path],
    target_path: Union[str, Path],
    *,
    verify: bool = True,
    gzip_delta: bool = False,
    token: Optional[CancellationToken] = None,
) -> PatchResult:
    """Patch files on disk; the target is created exclusively.

    The target file is removed on any failure, so a path that exists after
    this returns always holds a complete (and, with verify, checked) image.
    """
    target_path = Path(target_path)
    patch_log = LoggerFactory.for_patch()
    patch_log.info(f"Applying patch: basis={basis_path} delta={delta_path} target={target_path}")

    try:
        target_file = open(target_path, "xb")
    except FileExistsError as error:
        raise FileConflictError(str(target_path)) from error

    try:
        with ExitStack() as stack:
            stack.enter_context(target_file)
            basis: BinaryIO = stack.enter_context(open(basis_path, "rb"))
            delta: BinaryIO = stack.enter_context(open(delta_path, "rb"))
            target: BinaryIO = target_file
            if token is not None:
                basis = stack.enter_context(token.reader(basis))
                delta = stack.enter_context(token.reader(delta))
                target = stack.enter_context(token.writer(target))
            if gzip_delta:
                patch_log.debug(f"Treating delta file ({delta_path}) as gzip compressed")
                delta = stack.enter_context(gzip.GzipFile(fileobj=delta, mode="rb"))
            result = apply_patch(basis, delta, target, verify=verify)
    except BaseException:
        patch_log.debug(f"Removing incomplete patch output: {target_path}")
        _remove_quietly(target_path)
        raise

    patch_log.info(
        f"Patch applied: {result.operations} operations, {result.bytes_written} bytes"
    )
    return result


def _remove_quietly(path: Path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
