from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

from make_stemcell.storage.exceptions import OperationInterruptedError

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "MAKE_STEMCELL_LOG_DIR",
        Path.home() / ".local" / "state" / "make-stemcell" / "logs",
    )
)


def _should_log_chunk(record) -> bool:
    """Filter per-chunk I/O logs - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])

    if "chunk" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _should_log_tool_output(record) -> bool:
    """Filter raw ovftool output lines unless debugging."""
    tags = record["extra"].get("tags", [])

    # Errors from the tool always get through
    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "ovftool" in tags and "output" in tags:
        return record["level"].no >= logger.level("DEBUG").no

    return True


def _combined_filter(record) -> bool:
    """Combined filter for all log suppression rules."""
    return _should_log_chunk(record) and _should_log_tool_output(record)


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
    file_logging: bool = True,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: Pipeline failures, integrity errors
    - SUCCESS/INFO: Stage transitions, published stemcells
    - DEBUG: Detailed diagnostics, command execution, workspace paths
    - TRACE: Ultra-verbose (individual delta operations)

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/make-stemcell/logs)
        file_logging: Disable to only log to stderr
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr) - User-facing, filtered
    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <15}</cyan> | "
            "<blue>{extra[job_id]: <18}</blue> | "
            "{message}"
        ),
    )

    if not file_logging:
        return logger

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <15} | "
            "{extra[job_id]: <18} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - Detailed diagnostics (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <15} | "
                "{extra[job_id]: <18} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking a pipeline run
        tags: Tags for filtering (e.g., ["rdiff", "patch"])
        source: Source component (e.g., "rdiff", "ova", "pipeline")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Logs operation start, completion, and failure with duration tracking.
    Interrupted operations are logged as warnings rather than errors.

    Example:
        with operation_context("stemcell", version="1.2") as log:
            log.debug("Patching VHD")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed",
                duration_seconds=round(duration, 2),
            )
        except Exception as e:
            duration = time.time() - start_time
            level = "WARNING" if _is_interrupt(e) else "ERROR"
            log.log(
                level,
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


def _is_interrupt(error: BaseException) -> bool:
    return isinstance(error, OperationInterruptedError)


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_patch(job_id: str | None = None) -> Logger:
        """Logger for rdiff patch application."""
        if job_id is None:
            job_id = f"patch-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="rdiff", tags=["rdiff", "patch"])

    @staticmethod
    def for_ova() -> Logger:
        """Logger for OVA/OVF handling."""
        return logger.bind(source="ova", tags=["ova", "ovf"])

    @staticmethod
    def for_ovftool() -> Logger:
        """Logger for the external ovftool collaborator."""
        return logger.bind(source="ovftool", tags=["ovftool"])

    @staticmethod
    def for_pipeline(job_id: str | None = None) -> Logger:
        """Logger for the stemcell pipeline."""
        if job_id is None:
            job_id = f"stemcell-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="pipeline", tags=["pipeline"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for process-level events (startup, signals, config)."""
        return logger.bind(source="system", tags=["system"])
