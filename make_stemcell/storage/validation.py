"""Validation of command line inputs before a build starts.

All validation functions raise specific exceptions from the exceptions module
rather than returning boolean values.

Example:
    from make_stemcell.storage.validation import validate_version

    validate_version("1200.3")   # ok
    validate_version("1200")     # raises VersionFormatError
"""

import os
import re
from pathlib import Path
from typing import Optional, Union

from .exceptions import (
    FileConflictError,
    InputValidationError,
    StemcellError,
    VersionFormatError,
)

VERSION_RE = re.compile(r"^\d+\.\d+$")


def validate_version(version: str) -> None:
    """Validate a stemcell version of the form ``MAJOR.MINOR``.

    Raises:
        VersionFormatError: If the version does not match
    """
    if not version or not VERSION_RE.fullmatch(version):
        raise VersionFormatError(version or "")


def validate_input_file(path: Optional[Union[str, Path]], flag: str) -> None:
    """Validate that ``path`` names an existing regular file.

    Raises:
        InputValidationError: If the flag is empty or not a regular file
    """
    if not path:
        raise InputValidationError(f"missing required argument: {flag}")
    if not os.path.isfile(path):
        raise InputValidationError(f"{flag}: not a regular file: {path}")


def validate_output_dir(path: Union[str, Path]) -> None:
    """Validate that ``path`` is an existing, writable directory.

    Raises:
        InputValidationError: If it is missing, not a directory or read-only
    """
    if not os.path.isdir(path):
        raise InputValidationError(f"output directory does not exist: {path}")
    if not os.access(path, os.W_OK):
        raise InputValidationError(f"output directory is not writable: {path}")


def validate_stemcell_absent(path: Union[str, Path]) -> None:
    """Validate that the stemcell would not overwrite an existing file.

    Raises:
        FileConflictError: If ``path`` already exists
    """
    if os.path.lexists(path):
        raise FileConflictError(str(path))


def collect_errors(*checks) -> list[StemcellError]:
    """Run each ``(function, *args)`` check and return every failure."""
    errors = []
    for function, *args in checks:
        try:
            function(*args)
        except StemcellError as error:
            errors.append(error)
    return errors
