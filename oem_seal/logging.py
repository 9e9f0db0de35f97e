"""Loguru configuration for oem-seal.

Sinks:
    stderr            INFO+ (DEBUG+ with --debug, TRACE+ with --trace)
    operations.log    INFO+, what happened to which disk
    debug.log         only with --debug/--trace, full tracebacks
    structured.jsonl  INFO+, one JSON record per line

Every record carries ``source`` (component), ``job_id`` (pipeline stage run)
and ``tags`` in ``extra``; use LoggerFactory or get_logger() to bind them.
Raw tool output is logged as ``stdout: ...``/``stderr: ...`` at TRACE and is
kept off the console otherwise.
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
        "OEM_SEAL_LOG_DIR",
        Path.home() / ".local" / "state" / "oem-seal" / "logs",
    )
)

_CONTEXT_FORMAT = "{extra[source]: <12} | {extra[job_id]: <24} | "
CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[source]: <12}</cyan> | <blue>{extra[job_id]: <24}</blue> | {message}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | " + _CONTEXT_FORMAT + "{message}"
DEBUG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | " + _CONTEXT_FORMAT + "{extra[tags]} | {message}"
)

TOOL_OUTPUT_PREFIXES = ("stdout:", "stderr:")


def _should_log_command_output(record) -> bool:
    """Raw tool output (stdout/stderr dumps) is TRACE-only on the console."""
    if record["level"].no >= logger.level("WARNING").no:
        return True
    if "command" in record["extra"].get("tags", []) and record["message"].startswith(
        TOOL_OUTPUT_PREFIXES
    ):
        return record["level"].no <= logger.level("TRACE").no
    return True


def _add_file_sink(path: Path, level: str, rotation: str, retention: str, **options) -> None:
    logger.add(
        path,
        level=level,
        rotation=rotation,
        retention=retention,
        compression="zip",
        **options,
    )


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """Replace all loguru sinks with the oem-seal set.

    Args:
        debug: Console and debug.log at DEBUG
        trace: Console and debug.log at TRACE (raw sfdisk/veritysetup output)
        log_dir: Directory for the log files (defaults to DEFAULT_LOG_DIR)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "oem-seal"})

    console_level = "TRACE" if trace else "DEBUG" if debug else "INFO"
    logger.add(
        sys.stderr,
        level=console_level,
        format=CONSOLE_FORMAT,
        filter=_should_log_command_output,
        colorize=True,
        backtrace=False,
        diagnose=False,
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    _add_file_sink(
        log_dir / "operations.log",
        "INFO",
        rotation="5 MB",
        retention="7 days",
        format=FILE_FORMAT,
        backtrace=False,
        diagnose=False,
    )
    if debug or trace:
        _add_file_sink(
            log_dir / "debug.log",
            "TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            format=DEBUG_FORMAT,
            backtrace=True,
            diagnose=True,
        )
    _add_file_sink(
        log_dir / "structured.jsonl",
        "INFO",
        rotation="10 MB",
        retention="7 days",
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
    """Logger with the given context bound; unset fields keep their defaults."""
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
    """Run one pipeline stage under its own job id.

    Logs ``<operation> started``, then ``completed`` or ``failed`` with the
    elapsed time and the exception type. Exceptions are re-raised unchanged.

    Example:
        with operation_context("extend-oem", disk="/dev/sda") as log:
            log.debug("Reading partition table")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    log = logger.bind(source=operation, job_id=job_id, tags=[operation])
    started = time.monotonic()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log.info(f"{operation} started", **details)
        try:
            yield log
        except Exception as error:
            log.error(
                f"{operation} failed",
                error=str(error),
                error_type=type(error).__name__,
                duration_seconds=round(time.monotonic() - started, 2),
            )
            raise
        log.success(
            f"{operation} completed",
            duration_seconds=round(time.monotonic() - started, 2),
        )


class LoggerFactory:
    """Component loggers with ``source`` and ``tags`` pre-bound."""

    @staticmethod
    def for_command() -> Logger:
        """External tool invocations; tagged so raw output can be filtered."""
        return logger.bind(source="command", tags=["command"])

    @staticmethod
    def for_partition(disk: str | None = None) -> Logger:
        extras = {"disk": disk} if disk else {}
        return logger.bind(source="partition", tags=["partition", "storage"], **extras)

    @staticmethod
    def for_mount() -> Logger:
        return logger.bind(source="mount", tags=["mount", "storage"])

    @staticmethod
    def for_verity() -> Logger:
        return logger.bind(source="verity", tags=["verity", "seal"])

    @staticmethod
    def for_boot_config() -> Logger:
        return logger.bind(source="boot-config", tags=["grub", "seal"])

    @staticmethod
    def for_build(job_id: str | None = None) -> Logger:
        """Budget validation and pipeline orchestration; gets a fresh job id."""
        if job_id is None:
            job_id = f"build-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="build", tags=["build"])

    @staticmethod
    def for_system() -> Logger:
        return logger.bind(source="system", tags=["system"])
