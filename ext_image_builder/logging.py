from __future__ import annotations

import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger
    from ext_image_builder.domain.models import ImageSpec

from loguru import logger

DEFAULT_LOGLEVEL = 1

# Numeric log levels as used in image configuration files
LOGLEVEL_NAMES = {
    0: "WARNING",
    1: "INFO",
    2: "DEBUG",
}


def level_for(loglevel: int, *, debug: bool = False) -> str:
    """Map a numeric log level to a loguru level name.

    0 shows warnings and errors only, 1 adds progress, 2 adds tool command
    lines, 3 and above add the raw shell protocol traffic.
    """
    if loglevel >= 3:
        return "TRACE"
    if debug:
        return "DEBUG"
    return LOGLEVEL_NAMES.get(max(loglevel, 0), "INFO")


def setup_logging(
    *,
    loglevel: int = DEFAULT_LOGLEVEL,
    debug: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup logging sinks for an image build run.

    Logging Tiers:
    - ERROR: build failures, reported with the image type and output file
    - WARNING: skipped source entries
    - INFO: build steps and injection summaries
    - DEBUG: tool command lines
    - TRACE: every command and response exchanged with the editing shell

    Args:
        loglevel: Numeric log level from the configuration (0-3)
        debug: Force at least DEBUG output
        log_dir: Optional directory for a rotating build.log
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "genimage"})

    console_level = level_for(loglevel, debug=debug)

    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        colorize=None,
        format="<level>{extra[source]}({extra[job_id]})</level>: {message}",
    )

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "build.log",
            level="TRACE" if console_level == "TRACE" else "DEBUG",
            rotation="10 MB",
            retention=5,
            backtrace=True,
            diagnose=False,
            # host file names may hold undecodable bytes
            errors="backslashreplace",
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <8} | "
                "{extra[job_id]: <20} | "
                "{message}"
            ),
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
        job_id: Identifier shown in parentheses, normally the output file
        tags: Tags for filtering (e.g., ["protocol"])
        source: Source component, normally the image type

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
    Context manager for timing an operation.

    Logs operation start, completion and failure with the duration.

    Example:
        with operation_context("inject", source_path="/src", target="/") as log:
            log.debug("walking")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    log = (log or logger).bind(operation=operation, operation_id=job_id)

    start_time = time.time()
    log.debug(f"{operation.capitalize()} started", **details)
    try:
        yield log
    except Exception as e:
        duration = time.time() - start_time
        log.error(
            "{} failed after {:.2f}s: {}",
            operation.capitalize(),
            duration,
            e,
        )
        raise
    duration = time.time() - start_time
    log.info("{} completed in {:.2f}s", operation.capitalize(), duration)


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_image(image: ImageSpec) -> Logger:
        """Logger for one image, shown as ``type(file)``."""
        return logger.bind(
            source=image.fs_type.value, job_id=image.file, tags=["image"]
        )

    @staticmethod
    def for_debugfs(image_file: str | None = None) -> Logger:
        """Logger for traffic with the interactive editing shell."""
        return logger.bind(
            source="debugfs", job_id=image_file or "-", tags=["protocol"]
        )

    @staticmethod
    def for_system() -> Logger:
        """Logger for startup, configuration and shutdown."""
        return logger.bind(source="genimage", job_id="-", tags=["system"])
