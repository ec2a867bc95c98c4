"""Loguru configuration and bound-logger helpers.

Every record carries three ``extra`` keys: ``source`` (the subsystem),
``job_id`` (one workflow run, ``-`` outside a workflow) and ``tags``.

Sinks installed by :func:`setup_logging`:

    ================= ============ ==================================
    sink              level        kept
    ================= ============ ==================================
    stderr            INFO         -- (DEBUG/TRACE with the CLI flags)
    operations.log    INFO         7 days, rotated at 5 MB
    debug.log         DEBUG/TRACE  3 days, only with --debug/--trace
    structured.jsonl  INFO         7 days, one JSON object per record
    ================= ============ ==================================
"""

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

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "DRIVEASSIST_LOG_DIR",
        Path.home() / ".local" / "state" / "driveassist" / "logs",
    )
)

_CONTEXT = "{extra[source]: <10} | {extra[job_id]: <18}"
CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level: <8}</level> "
    f"<cyan>{_CONTEXT}</cyan> | {{message}}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <8} " + _CONTEXT + " | {message}"
DEBUG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <8} " + _CONTEXT + " {extra[tags]} | {message}"

# name -> (rotation, retention)
_FILE_POLICY = {
    "operations.log": ("5 MB", "7 days"),
    "debug.log": ("10 MB", "3 days"),
    "structured.jsonl": ("10 MB", "7 days"),
}


def _should_log_query(record) -> bool:
    """Keep routine query chatter (blkid, blockdev, lsblk) out of INFO output."""
    if record["level"].no >= logger.level("WARNING").no:
        return True
    if "query" in record["extra"].get("tags", []):
        return record["level"].no <= logger.level("DEBUG").no
    return True


def _add_file(log_dir: Path, name: str, level: str, **options) -> None:
    rotation, retention = _FILE_POLICY[name]
    logger.add(
        log_dir / name,
        level=level,
        rotation=rotation,
        retention=retention,
        compression="zip",
        enqueue=True,
        **options,
    )


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """Replace loguru's default handler with the driveassist sinks.

    Args:
        debug: also log every external command and its output
        trace: also log skipped report lines (implies the debug file)
        log_dir: where the log files go; defaults to ``DRIVEASSIST_LOG_DIR``
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    verbose_level = "TRACE" if trace else "DEBUG"
    logger.add(
        sys.stderr,
        level=verbose_level if debug or trace else "INFO",
        format=CONSOLE_FORMAT,
        filter=_should_log_query,
        colorize=True,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    _add_file(log_dir, "operations.log", "INFO", format=FILE_FORMAT, backtrace=False, diagnose=False)
    if debug or trace:
        _add_file(log_dir, "debug.log", verbose_level, format=DEBUG_FORMAT, backtrace=True, diagnose=True)
    _add_file(log_dir, "structured.jsonl", "INFO", format="{message}", serialize=True)

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """Logger with whichever of ``job_id``, ``tags`` and ``source`` are given."""
    context = {"job_id": job_id, "tags": list(tags) if tags is not None else None, "source": source}
    return logger.bind(**{key: value for key, value in context.items() if value is not None})


def new_job_id(operation: str) -> str:
    return f"{operation}-{uuid.uuid4().hex[:8]}"


@contextmanager
def operation_context(operation: str, **details):
    """Log the start, end and duration of a block of work.

    Yields a logger bound to a fresh job id. An exception is logged with its
    type and re-raised.

    Example:
        with operation_context("scan", disk="/dev/sdb") as log:
            log.debug("Reading partition table")
    """
    job_id = new_job_id(operation)
    title = operation.capitalize()
    log = get_logger(job_id=job_id, tags=[operation], source=operation)
    started = time.monotonic()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log.bind(**details).info(f"{title} started")
        try:
            yield log
        except Exception as error:
            log.bind(
                error=str(error),
                error_type=type(error).__name__,
                duration_seconds=round(time.monotonic() - started, 2),
            ).error(f"{title} failed")
            raise
        log.bind(duration_seconds=round(time.monotonic() - started, 2)).success(
            f"{title} completed"
        )


class LoggerFactory:
    """Pre-bound loggers, one per subsystem."""

    @staticmethod
    def for_inventory() -> Logger:
        """Device enumeration and report parsing."""
        return get_logger(source="inventory", tags=["inventory", "storage"])

    @staticmethod
    def for_query() -> Logger:
        """Short synchronous external queries."""
        return get_logger(source="query", tags=["query", "storage"])

    @staticmethod
    def for_planner() -> Logger:
        """Command synthesis and safety checks."""
        return get_logger(source="planner", tags=["planner", "storage"])

    @staticmethod
    def for_workflow(job_id: str | None = None, **details) -> Logger:
        """One operation workflow; ``details`` are bound as extra context."""
        return get_logger(
            job_id=job_id or new_job_id("workflow"),
            source="workflow",
            tags=["workflow", "storage"],
        ).bind(**details)

    @staticmethod
    def for_system() -> Logger:
        return get_logger(source="system", tags=["system"])


class EventLogger:
    """Helpers for structured event logging.

    Context goes through ``bind`` so that braces in rendered commands are
    never treated as format fields.
    """

    @staticmethod
    def log_state_change(log: Logger, job_id: str, old_state: str, new_state: str) -> None:
        log.bind(
            event_type="workflow_state",
            job_id=job_id,
            old_state=old_state,
            new_state=new_state,
        ).info(f"Workflow {job_id}: {old_state} -> {new_state}")

    @staticmethod
    def log_command(log: Logger, command: str, **details) -> None:
        log.bind(event_type="command", command=command, **details).debug(
            f"Dispatching: {command}"
        )

    @staticmethod
    def log_refusal(log: Logger, operation: str, reason: str) -> None:
        log.bind(event_type="refusal", operation=operation, reason=reason).warning(
            f"{operation} refused: {reason}"
        )
