"""Exclusively-owned scratch directory for one pipeline run."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from make_stemcell.logging import get_logger
from make_stemcell.storage.exceptions import WorkspaceMissingError

log = get_logger(source=__name__, tags=["workspace"])

WORKSPACE_PREFIX = "make-stemcell-"


class Workspace:
    """Temporary directory created on first use and removed exactly once.

    Once removed, the workspace cannot be used again: ``path`` raises
    WorkspaceMissingError, as it does when the directory disappears
    underneath us.
    """

    def __init__(self, parent: Optional[Union[str, Path]] = None, prefix: str = WORKSPACE_PREFIX):
        self._parent = Path(parent) if parent is not None else None
        self._prefix = prefix
        self._path: Optional[Path] = None
        self._removed = False

    @property
    def location(self) -> Optional[Path]:
        """Directory path once created, without checking it still exists."""
        return self._path

    @property
    def path(self) -> Path:
        """The directory, created on first access."""
        if self._path is None:
            if self._removed:
                raise WorkspaceMissingError("<removed>")
            self._path = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._parent))
            log.debug(f"Created workspace: {self._path}")
            return self._path
        if self._removed or not self._path.is_dir():
            raise WorkspaceMissingError(str(self._path))
        return self._path

    def cleanup(self) -> bool:
        """Remove the directory. Returns True only on the call that removed it."""
        if self._removed:
            return False
        self._removed = True
        if self._path is None:
            return False
        try:
            shutil.rmtree(self._path)
        except FileNotFoundError:
            log.debug(f"Workspace already gone: {self._path}")
            return False
        log.debug(f"Removed workspace: {self._path}")
        return True

    def __repr__(self) -> str:
        return f"Workspace({self._path!s})"
