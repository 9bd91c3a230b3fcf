"""Stemcell packaging.

A stemcell is a gzip-compressed tar holding two members:

    image        the gzip-compressed OVA
    stemcell.MF  the manifest, carrying the SHA1 of ``image``
"""

from __future__ import annotations

import gzip
import hashlib
import io
import shutil
import tarfile
from pathlib import Path
from typing import BinaryIO, Optional, Union

from make_stemcell.domain.models import StemcellManifest
from make_stemcell.logging import get_logger

from .cancel import CancellationToken
from .exceptions import FileConflictError, InvariantViolation

log = get_logger(source=__name__, tags=["stemcell"])

IMAGE_NAME = "image"
MANIFEST_NAME = "stemcell.MF"
COPY_BUFFER_SIZE = 1024 * 1024


class _HashingWriter(io.RawIOBase):
    """Forward writes to ``stream`` while hashing them."""

    def __init__(self, stream: BinaryIO, hasher):
        super().__init__()
        self._stream = stream
        self.hasher = hasher

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        written = self._stream.write(data)
        self.hasher.update(data)
        return len(data) if written is None else written


def _create_exclusive(path: Path) -> BinaryIO:
    try:
        return open(path, "xb")
    except FileExistsError as error:
        raise FileConflictError(str(path)) from error


def compress_image(
    ova: Union[str, Path],
    image: Union[str, Path],
    *,
    token: Optional[CancellationToken] = None,
) -> str:
    """Gzip ``ova`` into a new file ``image``; returns SHA1 hex of ``image``."""
    image = Path(image)
    hasher = hashlib.sha1()
    handle = _create_exclusive(image)
    try:
        with handle, open(ova, "rb") as source:
            target: BinaryIO = token.writer(handle) if token is not None else handle
            reader: BinaryIO = token.reader(source) if token is not None else source
            hashed = _HashingWriter(target, hasher)
            with gzip.GzipFile(filename="", mode="wb", fileobj=hashed, mtime=0) as compressed:
                shutil.copyfileobj(reader, compressed, COPY_BUFFER_SIZE)
    except BaseException:
        image.unlink(missing_ok=True)
        raise
    digest = hasher.hexdigest()
    log.debug(f"Compressed {ova} into {image.name} (sha1 {digest})")
    return digest


def write_manifest(manifest: StemcellManifest, path: Union[str, Path]) -> Path:
    """Write ``stemcell.MF`` exclusively."""
    path = Path(path)
    if not manifest.sha1:
        raise InvariantViolation("stemcell manifest has no image checksum")
    with _create_exclusive(path) as handle:
        handle.write(manifest.render().encode("utf-8"))
    return path


def create_stemcell(
    image: Union[str, Path],
    manifest: Union[str, Path],
    destination: Union[str, Path],
    *,
    token: Optional[CancellationToken] = None,
) -> Path:
    """Assemble the stemcell tgz from ``image`` and ``manifest``.

    Raises:
        InvariantViolation: ``image`` or ``manifest`` is missing or empty
        FileConflictError: ``destination`` already exists
    """
    image = Path(image)
    manifest = Path(manifest)
    destination = Path(destination)
    for part in (image, manifest):
        if not part.is_file() or part.stat().st_size == 0:
            raise InvariantViolation(f"cannot build stemcell: {part} is missing or empty")

    handle = _create_exclusive(destination)
    try:
        with handle:
            target: BinaryIO = token.writer(handle) if token is not None else handle
            with tarfile.open(fileobj=target, mode="w:gz") as archive:
                _add(archive, image, IMAGE_NAME, token)
                _add(archive, manifest, MANIFEST_NAME, token)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise

    log.info(f"Created stemcell: {destination.name}")
    return destination


def _add(
    archive: tarfile.TarFile, path: Path, arcname: str, token: Optional[CancellationToken]
) -> None:
    info = archive.gettarinfo(str(path), arcname=arcname)
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mode = 0o644
    with open(path, "rb") as source:
        reader: BinaryIO = token.reader(source) if token is not None else source
        archive.addfile(info, reader)
