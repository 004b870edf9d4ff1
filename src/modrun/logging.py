"""Logging utilities for modrun.

Provides:
- A TRACE level below DEBUG for command text and session state changes
- Mapping from CLI verbosity (-v, -vv, -vvv) to log levels
- Console and optional file logging setup
- A timing scope for module executions
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
TRACE_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"

# Custom TRACE level (more detailed than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

VERBOSITY_LEVELS = {
    0: logging.WARNING,   # Default: skipped modules and failures only
    1: logging.INFO,      # -v: connections and executions
    2: logging.DEBUG,     # -vv: descriptor parsing, agent identities
    3: TRACE,             # -vvv: command text and session state changes
}

LEVEL_NAMES = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert a count of -v flags to a logging level."""
    return VERBOSITY_LEVELS.get(min(max(verbosity, 0), 3), TRACE)


def get_level_from_name(level_name: str) -> int:
    """Convert a level name (trace, debug, info, ...) to a logging level.

    Raises:
        ValueError: If the level name is unknown
    """
    level = LEVEL_NAMES.get(level_name.lower())
    if level is None:
        valid = ", ".join(LEVEL_NAMES)
        raise ValueError(f"Invalid log level: {level_name}. Valid levels: {valid}")
    return level


def configure_logging(
    level: int = logging.WARNING,
    log_file: str | Path | None = None,
    file_level: int | None = None,
    format_string: str | None = None,
) -> None:
    """Configure root logging for modrun.

    Args:
        level: Console logging level
        log_file: Optional path to also write logs to
        file_level: Level for the file handler (defaults to level)
        format_string: Console format (chosen from level if None)

    Example:
        >>> configure_logging(level=logging.INFO)
        >>> configure_logging(level=logging.WARNING, log_file="/tmp/modrun.log",
        ...                   file_level=TRACE)
    """
    if format_string is None:
        if level <= TRACE:
            format_string = TRACE_FORMAT
        elif level <= logging.DEBUG:
            format_string = DEBUG_FORMAT
        else:
            format_string = DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(min(level, file_level or level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(file_level or level)
        # Files always get the detailed format
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        root_logger.addHandler(file_handler)


def trace(logger: logging.Logger, message: str) -> None:
    """Log at TRACE level."""
    logger.log(TRACE, message)


@contextmanager
def log_performance(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    threshold: float | None = None,
    **context: Any,
) -> Generator[None, None, None]:
    """Time a block and log its duration, whether it succeeds or fails.

    Args:
        logger: Logger to write to
        operation: Description of the timed operation
        level: Log level
        threshold: Only log when the duration reaches this many seconds
        **context: Key/value pairs appended to the message

    Example:
        >>> with log_performance(logger, "Module execution", module="uptime"):
        ...     await module.execute(target, auth, sync)
        INFO: Module execution completed in 0.412s (module=uptime)
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        if threshold is None or duration >= threshold:
            message = f"{operation} completed in {duration:.3f}s"
            if context:
                message += " (" + ", ".join(f"{k}={v}" for k, v in context.items()) + ")"
            logger.log(level, message)
