"""Custom exceptions for stemcell building.

This module defines a hierarchy of exceptions so callers can tell bad input,
integrity failures, resource problems, external tool failures and user
interruption apart.

Exception Hierarchy:
    StemcellError (base)
        ├── InputValidationError
        │   ├── DeltaFormatError
        │   │   └── UnexpectedEndOfInputError
        │   ├── ArchiveError
        │   │   ├── CorruptArchiveError
        │   │   ├── UnsupportedSubdirectoryError
        │   │   ├── UnsupportedEntryTypeError
        │   │   ├── TooManyEntriesError
        │   │   └── OVAValidationError
        │   ├── DocumentError
        │   │   ├── ElementNotFoundError
        │   │   └── MultipleElementsFoundError
        │   └── VersionFormatError
        ├── IntegrityError
        │   ├── MissingChecksumError
        │   └── ChecksumMismatchError
        ├── ResourceError
        │   ├── WorkspaceMissingError
        │   ├── FileConflictError
        │   └── PublishError
        ├── ExternalToolError
        │   ├── OvftoolNotFoundError
        │   └── ConversionFailedError
        └── OperationInterruptedError

    InvariantViolation is a RuntimeError and intentionally not a StemcellError:
    it marks a programming error, not a failed run.

Usage:
    from make_stemcell.storage.exceptions import ChecksumMismatchError

    if expected != actual:
        raise ChecksumMismatchError(expected, actual)
"""

from __future__ import annotations


class StemcellError(Exception):
    """Base exception for all stemcell building failures."""


class InputValidationError(StemcellError):
    """Base exception for malformed or unsafe input."""


class DeltaFormatError(InputValidationError):
    """Delta stream is not a valid rdiff delta."""


class UnexpectedEndOfInputError(DeltaFormatError):
    """Delta stream ended in the middle of a header or record."""

    def __init__(self, context: str = "delta"):
        self.context = context
        super().__init__(f"Unexpected end of input while reading {context}")


class ArchiveError(InputValidationError):
    """Base exception for rejected archives."""


class CorruptArchiveError(ArchiveError):
    """Archive is not a readable tar stream."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Corrupt archive: {reason}")


class UnsupportedSubdirectoryError(ArchiveError):
    """Archive entry name implies a subdirectory."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Archive contains subdirectory: {name}")


class UnsupportedEntryTypeError(ArchiveError):
    """Archive entry is not a regular file."""

    def __init__(self, name: str, entry_type: str):
        self.name = name
        self.entry_type = entry_type
        super().__init__(f"Unexpected archive entry type ({entry_type}): {name}")


class TooManyEntriesError(ArchiveError):
    """Archive holds more entries than allowed."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Too many files in archive (limit is {limit})")


class OVAValidationError(ArchiveError):
    """OVA file set does not form a valid OVF package."""

    def __init__(self, reason: str, archive: str | None = None):
        self.reason = reason
        self.archive = archive
        msg = f"Invalid OVA ({archive}): {reason}" if archive else f"Invalid OVA: {reason}"
        super().__init__(msg)


class DocumentError(InputValidationError):
    """Base exception for hardware description edits."""


class ElementNotFoundError(DocumentError):
    """No device block with the requested name exists."""

    def __init__(self, element_name: str):
        self.element_name = element_name
        super().__init__(f"Element not found: {element_name}")


class MultipleElementsFoundError(DocumentError):
    """More than one device block with the requested name exists."""

    def __init__(self, element_name: str, count: int):
        self.element_name = element_name
        self.count = count
        super().__init__(f"Multiple elements found ({count}): {element_name}")


class VersionFormatError(InputValidationError):
    """Stemcell version string is malformed."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(
            f"Invalid version ({version}) expected format [NUMBER].[NUMBER]"
        )


class IntegrityError(StemcellError):
    """Base exception for checksum failures."""


class MissingChecksumError(IntegrityError):
    """Verification requested but the delta carries no target checksum."""

    def __init__(self):
        super().__init__("Checksum requested but delta is missing the target hash")


class ChecksumMismatchError(IntegrityError):
    """Reconstructed output does not match the delta's target checksum."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Final data hash does not match: expected {expected}, got {actual}"
        )


class ResourceError(StemcellError):
    """Base exception for filesystem resource failures."""


class WorkspaceMissingError(ResourceError):
    """Workspace directory disappeared while the pipeline still needed it."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Workspace directory is missing (was it deleted?): {path}")


class FileConflictError(ResourceError):
    """Exclusive file creation failed because the path already exists."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File already exists - refusing to overwrite: {path}")


class PublishError(ResourceError):
    """Finished stemcell could not be moved to the output directory."""

    def __init__(self, source: str, destination: str, reason: str):
        self.source = source
        self.destination = destination
        self.reason = reason
        super().__init__(
            f"Failed to publish stemcell {source} -> {destination}: {reason}"
        )


class ExternalToolError(StemcellError):
    """Base exception for external tool failures."""


class OvftoolNotFoundError(ExternalToolError):
    """The ovftool binary could not be located."""

    def __init__(self, searched: list[str] | None = None):
        self.searched = searched or []
        msg = "could not locate 'ovftool' on PATH"
        if self.searched:
            msg += f" (also searched: {', '.join(self.searched)})"
        super().__init__(msg)


class ConversionFailedError(ExternalToolError):
    """ovftool exited non-zero; output is kept verbatim for the operator."""

    def __init__(self, command: list[str], returncode: int, output: str):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"converting vmx to ova: exit status {returncode}\n"
            f"-- BEGIN OVFTOOL OUTPUT --\n{output}\n-- END OVFTOOL OUTPUT --"
        )


class OperationInterruptedError(StemcellError):
    """I/O was attempted after the run was cancelled."""

    def __init__(self, message: str = "interrupted"):
        super().__init__(message)


class InvariantViolation(RuntimeError):
    """A pipeline stage ran before the state it depends on was set."""
