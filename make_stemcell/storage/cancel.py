"""Cooperative cancellation for byte streams.

A :class:`CancellationToken` is a one-shot stop signal shared by every stream
of a pipeline run. Streams wrapped with :class:`CancelReader` or
:class:`CancelWriter` check the token before each call and raise
:class:`OperationInterruptedError` once it has fired. The check does not
interrupt a call already in progress; it bounds how many further chunks are
transferred after cancellation.

Usage:
    token = CancellationToken()
    with open(path, "rb") as handle:
        reader = token.reader(handle)
        data = reader.read(65536)  # raises once token.cancel() was called
"""

from __future__ import annotations

import io
import threading
from typing import BinaryIO

from .exceptions import OperationInterruptedError


class CancellationToken:
    """One-shot stop signal, safe to fire from a signal handler."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "interrupted") -> bool:
        """Fire the signal. Returns False if it had already fired.

        Takes no lock of its own and does not log, so a signal handler may
        call it while the interrupted thread is inside the logger.
        """
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    def check(self) -> None:
        """Raise OperationInterruptedError if the signal has fired."""
        if self._event.is_set():
            raise OperationInterruptedError(self.reason or "interrupted")

    def reader(self, stream: BinaryIO) -> CancelReader:
        return CancelReader(stream, self)

    def writer(self, stream: BinaryIO) -> CancelWriter:
        return CancelWriter(stream, self)


class CancelReader(io.RawIOBase):
    """Readable stream that stops reading once the token fires."""

    def __init__(self, stream: BinaryIO, token: CancellationToken):
        super().__init__()
        self._stream = stream
        self._token = token

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return self._stream.seekable()

    def read(self, size: int = -1) -> bytes:
        self._token.check()
        return self._stream.read(size)

    def readinto(self, buffer) -> int:
        self._token.check()
        data = self._stream.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._token.check()
        return self._stream.seek(offset, whence)

    def tell(self) -> int:
        return self._stream.tell()

    def close(self) -> None:
        # The wrapped stream belongs to the caller
        super().close()


class CancelWriter(io.RawIOBase):
    """Writable stream that stops writing once the token fires."""

    def __init__(self, stream: BinaryIO, token: CancellationToken):
        super().__init__()
        self._stream = stream
        self._token = token

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self._token.check()
        written = self._stream.write(data)
        return len(data) if written is None else written

    def flush(self) -> None:
        if not self.closed and not getattr(self._stream, "closed", False):
            self._stream.flush()

    def tell(self) -> int:
        return self._stream.tell()

    def close(self) -> None:
        # The wrapped stream belongs to the caller
        if not self.closed:
            self.flush()
        super().close()
