"""ovftool discovery and VMX to OVA conversion."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional, Union

from make_stemcell.logging import LoggerFactory, get_logger

from ..cancel import CancellationToken
from ..exceptions import (
    ConversionFailedError,
    OperationInterruptedError,
    OvftoolNotFoundError,
)

log = LoggerFactory.for_ovftool()
output_log = get_logger(source="ovftool", tags=["ovftool", "output"])

OVFTOOL_ENV = "OVFTOOL"

_POLL_INTERVAL = 0.2
_TERMINATE_TIMEOUT = 10.0

_KNOWN_LOCATIONS = {
    "darwin": [
        "/Applications/VMware Fusion.app/Contents/Library/VMware OVF Tool/ovftool",
        "/Applications/VMware OVF Tool/ovftool",
    ],
    "win32": [
        r"C:\Program Files\VMware\VMware OVF Tool\ovftool.exe",
        r"C:\Program Files (x86)\VMware\VMware Workstation\OVFTool\ovftool.exe",
    ],
    "linux": [
        "/usr/lib/vmware-ovftool/ovftool",
        "/usr/bin/ovftool",
    ],
}


def known_locations(platform: Optional[str] = None) -> list[str]:
    platform = platform or sys.platform
    for prefix, paths in _KNOWN_LOCATIONS.items():
        if platform.startswith(prefix):
            return list(paths)
    return []


def _is_executable(path: Union[str, Path]) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def find_ovftool(explicit: Optional[str] = None) -> str:
    """Locate the ovftool executable.

    Search order: ``explicit`` (from settings), the ``OVFTOOL`` environment
    variable, ``PATH``, then the usual VMware install locations.

    Raises:
        OvftoolNotFoundError: None of the candidates is an executable file
    """
    for candidate in (explicit, os.environ.get(OVFTOOL_ENV)):
        if candidate:
            if _is_executable(candidate):
                return candidate
            log.warning(f"Configured ovftool is not executable: {candidate}")

    found = shutil.which("ovftool")
    if found:
        return found

    searched = known_locations()
    for candidate in searched:
        if _is_executable(candidate):
            return candidate
    raise OvftoolNotFoundError(searched)


def convert_vmx_to_ova(
    vmx: Union[str, Path],
    ova: Union[str, Path],
    *,
    ovftool: Optional[str] = None,
    token: Optional[CancellationToken] = None,
) -> str:
    """Run ``ovftool <vmx> <ova>`` and return its combined output.

    The tool's stdout and stderr are captured together. If the token fires
    while the tool runs, the process is terminated and
    OperationInterruptedError is raised.

    Raises:
        OvftoolNotFoundError: ovftool could not be located
        ConversionFailedError: ovftool exited non-zero (output attached verbatim)
        OperationInterruptedError: The token fired during conversion
    """
    executable = find_ovftool(ovftool)
    command = [executable, str(vmx), str(ova)]
    log.debug(f"Running command: {' '.join(command)}")

    if token is not None:
        token.check()
    process = subprocess.Popen(
        command,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    while True:
        try:
            output, _ = process.communicate(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if token is not None and token.cancelled:
                _terminate(process)
                raise OperationInterruptedError("ovftool interrupted") from None

    for line in output.splitlines():
        output_log.debug(line)

    if process.returncode != 0:
        raise ConversionFailedError(command, process.returncode, output)
    log.info(f"Converted {Path(vmx).name} to {Path(ova).name}")
    return output


def _terminate(process: subprocess.Popen) -> None:
    log.warning(f"Terminating ovftool (pid {process.pid})")
    process.terminate()
    try:
        process.communicate(timeout=_TERMINATE_TIMEOUT)
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()
