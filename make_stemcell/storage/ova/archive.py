"""Safe handling of OVA (tar) archives.

OVA files produced by ovftool are flat tar archives. Anything else - nested
paths, links, devices, more than a handful of entries - is rejected before it
touches the filesystem.

Main Functions:
    - extract_archive(): Extract a flat tar stream into a directory
    - extract_ova(): Extract an OVA file into a directory
    - list_archive_names(): Entry names of an OVA, with the same limits
    - validate_ovf_names(): Check an OVA file set forms an OVF package
    - create_ova(): Pack an OVF directory back into an OVA
"""

from __future__ import annotations

import os
import posixpath
import shutil
import tarfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Optional, Union

from make_stemcell.config.settings import DEFAULT_MAX_ARCHIVE_ENTRIES
from make_stemcell.logging import LoggerFactory

from ..cancel import CancellationToken
from ..exceptions import (
    CorruptArchiveError,
    FileConflictError,
    OVAValidationError,
    TooManyEntriesError,
    UnsupportedEntryTypeError,
    UnsupportedSubdirectoryError,
)

log = LoggerFactory.for_ova()

COPY_BUFFER_SIZE = 1024 * 1024


def _entry_type(member: tarfile.TarInfo) -> str:
    if member.issym():
        return "symlink"
    if member.islnk():
        return "hardlink"
    if member.isdir():
        return "directory"
    if member.ischr() or member.isblk():
        return "device"
    if member.isfifo():
        return "fifo"
    return f"type {member.type!r}"


def _is_empty(fileobj: BinaryIO) -> bool:
    position = fileobj.tell()
    first = fileobj.read(1)
    fileobj.seek(position)
    return not first


@contextmanager
def _open_archive(fileobj: BinaryIO) -> Iterator[tarfile.TarFile]:
    """Open a plain tar stream; tar read errors become CorruptArchiveError."""
    try:
        with tarfile.open(fileobj=fileobj, mode="r:") as archive:
            yield archive
    except tarfile.ReadError as error:
        raise CorruptArchiveError(str(error)) from error


def _checked_members(
    archive: tarfile.TarFile, max_entries: int
) -> Iterator[tarfile.TarInfo]:
    """Yield validated members; raise before yielding anything unsafe."""
    for count, member in enumerate(archive, start=1):
        if count > max_entries:
            raise TooManyEntriesError(max_entries)

        # expect a flat archive
        name = member.name
        if posixpath.basename(name) != name or name in ("", ".", ".."):
            raise UnsupportedSubdirectoryError(name)

        # only allow regular files
        if not member.isreg():
            raise UnsupportedEntryTypeError(name, _entry_type(member))

        yield member


def extract_archive(
    fileobj: BinaryIO,
    destination: Union[str, Path],
    *,
    max_entries: int = DEFAULT_MAX_ARCHIVE_ENTRIES,
    token: Optional[CancellationToken] = None,
) -> list[str]:
    """Extract a flat tar archive into ``destination``.

    Every entry is created exclusively with the entry's permission bits.
    Extraction stops at the first bad entry; files written before it are left
    in place for the owner of ``destination`` to remove. A zero-length stream
    is an empty archive.

    Args:
        fileobj: Seekable tar stream (no compression)
        destination: Existing directory to extract into
        max_entries: Largest number of entries accepted
        token: Optional cancellation token checked on every read and write

    Returns:
        Names of the extracted files, in archive order

    Raises:
        TooManyEntriesError: Archive holds more than ``max_entries`` entries
        UnsupportedSubdirectoryError: Entry name has a directory component
        UnsupportedEntryTypeError: Entry is not a regular file
        FileConflictError: Entry name already exists (including duplicates)
        CorruptArchiveError: Stream is not a readable tar archive
    """
    destination = Path(destination)
    extracted: list[str] = []
    if _is_empty(fileobj):
        log.debug("Archive is empty, nothing to extract")
        return extracted

    source = token.reader(fileobj) if token is not None else fileobj
    with _open_archive(source) as archive:
        for member in _checked_members(archive, max_entries):
            path = destination / member.name
            _extract_member(archive, member, path, token)
            extracted.append(member.name)
            log.debug(f"Extracted {member.name} ({member.size} bytes)")

    return extracted


def _extract_member(
    archive: tarfile.TarFile,
    member: tarfile.TarInfo,
    path: Path,
    token: Optional[CancellationToken],
) -> None:
    mode = member.mode & 0o777
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, mode)
    except FileExistsError as error:
        raise FileConflictError(str(path)) from error

    with os.fdopen(fd, "wb") as handle:
        os.fchmod(handle.fileno(), mode)
        source = archive.extractfile(member)
        if source is None:
            return
        with source:
            target = token.writer(handle) if token is not None else handle
            shutil.copyfileobj(source, target, COPY_BUFFER_SIZE)
            target.flush()


def extract_ova(
    ova: Union[str, Path],
    destination: Union[str, Path],
    *,
    max_entries: int = DEFAULT_MAX_ARCHIVE_ENTRIES,
    token: Optional[CancellationToken] = None,
) -> list[str]:
    """Extract the OVA file at ``ova`` into ``destination``."""
    log.debug(f"Extracting ova file ({ova}) to directory: {destination}")
    with open(ova, "rb") as handle:
        return extract_archive(handle, destination, max_entries=max_entries, token=token)


def list_archive_names(
    ova: Union[str, Path], *, max_entries: int = DEFAULT_MAX_ARCHIVE_ENTRIES
) -> list[str]:
    """Return entry names of the OVA at ``ova`` without extracting."""
    with open(ova, "rb") as handle:
        if _is_empty(handle):
            return []
        with _open_archive(handle) as archive:
            return [member.name for member in _checked_members(archive, max_entries)]


def _by_extension(names: Iterable[str], ext: str) -> list[str]:
    return [name for name in names if posixpath.splitext(name)[1] == ext]


def validate_ovf_names(names: Iterable[str], archive: Optional[str] = None) -> None:
    """Minimal check that ``names`` constitute an OVF package.

    Requires exactly one ``.ovf`` descriptor and at most one ``.mf`` manifest
    and ``.cert`` certificate (DSP0243).

    Raises:
        OVAValidationError: If the file set is not a valid OVF package
    """
    names = list(names)
    ovfs = _by_extension(names, ".ovf")
    if not ovfs:
        raise OVAValidationError("missing .ovf file (one is required)", archive)
    if len(ovfs) > 1:
        raise OVAValidationError(
            f"multiple .ovf files (expected one): {', '.join(ovfs)}", archive
        )
    for ext in (".mf", ".cert"):
        matches = _by_extension(names, ext)
        if len(matches) > 1:
            raise OVAValidationError(
                f"multiple {ext} files (expected one or zero): {', '.join(matches)}",
                archive,
            )


def ova_member_order(names: Iterable[str]) -> list[str]:
    """Order OVA members: descriptor, manifest, certificate, then the rest."""
    rank = {".ovf": 0, ".mf": 1, ".cert": 2}
    return sorted(names, key=lambda name: (rank.get(posixpath.splitext(name)[1], 3), name))


def create_ova(
    directory: Union[str, Path],
    destination: Union[str, Path],
    *,
    token: Optional[CancellationToken] = None,
) -> list[str]:
    """Pack the files of an OVF directory into a new OVA at ``destination``.

    The OVF descriptor must come first in the archive, so members are added
    in :func:`ova_member_order`. The destination is created exclusively and
    removed again if packing fails.
    """
    directory = Path(directory)
    destination = Path(destination)
    names = ova_member_order(entry.name for entry in directory.iterdir() if entry.is_file())
    validate_ovf_names(names, str(directory))

    try:
        handle = open(destination, "xb")
    except FileExistsError as error:
        raise FileConflictError(str(destination)) from error

    try:
        with handle:
            target = token.writer(handle) if token is not None else handle
            with tarfile.open(fileobj=target, mode="w", format=tarfile.USTAR_FORMAT) as archive:
                for name in names:
                    _add_file(archive, directory / name, name, token)
            target.flush()
    except BaseException:
        destination.unlink(missing_ok=True)
        raise

    log.debug(f"Created ova ({destination}) from {len(names)} files")
    return names


def _add_file(
    archive: tarfile.TarFile,
    path: Path,
    arcname: str,
    token: Optional[CancellationToken],
) -> None:
    info = archive.gettarinfo(str(path), arcname=arcname)
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    with open(path, "rb") as handle:
        source = token.reader(handle) if token is not None else handle
        archive.addfile(info, source)
