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

LOG_LEVEL_ENV = "LUKS_HEADER_BACKUP_LOG_LEVEL"
LOG_DIR_ENV = "LUKS_HEADER_BACKUP_LOG_DIR"
DEFAULT_LEVEL = "INFO"

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[source]: <15}</cyan> | "
    "<blue>{extra[job_id]: <15}</blue> | "
    "{message}"
)


def resolve_level(*, debug: bool = False, trace: bool = False, level: str | None = None) -> str:
    """Pick the console level: --trace, then --debug, then the env switch."""
    if trace:
        return "TRACE"
    if debug:
        return "DEBUG"
    requested = (level or os.environ.get(LOG_LEVEL_ENV) or DEFAULT_LEVEL).upper()
    try:
        logger.level(requested)
    except ValueError:
        return DEFAULT_LEVEL
    return requested


def _should_log_command_output(record) -> bool:
    """Keep raw command stdout/stderr out of the console unless at TRACE."""
    tags = record["extra"].get("tags", [])
    if "command-output" in tags:
        return record["level"].no <= logger.level("TRACE").no or record["level"].no >= logger.level(
            "WARNING"
        ).no
    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    level: str | None = None,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup console logging plus optional file sinks.

    Log Files (only when a log directory is configured):
    - operations.log: INFO+ events (30 day retention)
    - structured.jsonl: Structured JSON logs for analysis (30 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        level: Explicit level name; falls back to $LUKS_HEADER_BACKUP_LOG_LEVEL
        log_dir: Directory for file sinks; falls back to $LUKS_HEADER_BACKUP_LOG_DIR
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    console_level = resolve_level(debug=debug, trace=trace, level=level)

    # SINK 1: Console (stderr) - journald picks this up under systemd
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_should_log_command_output,
        colorize=None,
        format=_CONSOLE_FORMAT,
    )

    if log_dir is None and os.environ.get(LOG_DIR_ENV):
        log_dir = Path(os.environ[LOG_DIR_ENV])
    if log_dir is None:
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="30 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <15} | "
            "{extra[job_id]: <15} | "
            "{message}"
        ),
    )

    # SINK 3: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="30 days",
        compression="zip",
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
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["discovery", "blkid"])
        source: Source component (e.g., "discovery", "replication")

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
def operation_context(operation: str, log: Logger | None = None, **details):
    """
    Context manager for tracking one unit of work with automatic timing.

    Logs start, completion and failure with duration.

    Args:
        operation: Operation name (e.g., "backup")
        log: Logger to bind onto; defaults to the global logger
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("backup", device="/dev/sda2") as log:
            log.debug("Extracting header")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    base = log if log is not None else logger

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        bound = base.bind(source=operation, job_id=job_id, tags=[operation])

        bound.info(f"{operation.capitalize()} started", **details)

        try:
            yield bound
            duration = time.time() - start_time
            bound.debug(f"{operation.capitalize()} finished", duration_seconds=round(duration, 2))
        except Exception as e:
            duration = time.time() - start_time
            bound.error(
                f"{operation.capitalize()} aborted",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_discovery() -> Logger:
        """Logger for block device probing."""
        return logger.bind(source="discovery", tags=["discovery", "blkid"])

    @staticmethod
    def for_extraction() -> Logger:
        """Logger for header backup and dump."""
        return logger.bind(source="extraction", tags=["extraction", "cryptsetup"])

    @staticmethod
    def for_replication(job_id: str | None = None) -> Logger:
        """Logger for copies to remote and local destinations."""
        if job_id is None:
            job_id = f"replicate-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="replication", tags=["replication", "transport"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for startup, configuration and the run summary."""
        return logger.bind(source="system", tags=["system"])
