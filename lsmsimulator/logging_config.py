"""Opt-in logging for lsmsimulator.

The library installs only a NullHandler, so nothing is printed until one of
these helpers is called. All simulator modules log under the
``lsmsimulator`` logger hierarchy (``lsmsimulator.simulation``,
``lsmsimulator.storage.lsm_tree``, ...).

Example usage:
    import lsmsimulator

    lsmsimulator.enable_console_logging(level="DEBUG")
    lsmsimulator.enable_file_logging("logs/lsm.log", max_bytes=5_000_000)
    lsmsimulator.enable_json_logging()
    lsmsimulator.configure_from_env()

Environment variables:
    LSMSIM_LOGGING: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    LSMSIM_LOG_FILE: Path to a rotating log file
    LSMSIM_LOG_JSON: Set to "1" for JSON output
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Literal

__all__ = [
    "JsonFormatter",
    "configure_from_env",
    "disable_logging",
    "enable_console_logging",
    "enable_file_logging",
    "enable_json_logging",
    "set_level",
    "set_module_level",
]

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5

LOGGER_NAME = "lsmsimulator"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for log shippers.

    Example output:
        {"timestamp": "2026-01-15T10:30:00.123456+00:00", "level": "INFO",
         "logger": "lsmsimulator.simulation", "message": "Simulator reset"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def _get_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, level.upper(), logging.INFO)


def _get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def _attach(handler: logging.Handler, level: LogLevel | int) -> None:
    logger = _get_logger()
    logger.setLevel(_get_level(level))
    handler.setLevel(_get_level(level))
    logger.addHandler(handler)


def enable_console_logging(
    level: LogLevel | int = "INFO",
    format: str = DEFAULT_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> logging.StreamHandler:
    """Send simulator logs to stderr.

    Args:
        level: Log level name or int.
        format: Log message format string.
        date_format: Date format for %(asctime)s.

    Returns:
        The created StreamHandler.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format, date_format))
    _attach(handler, level)
    return handler


def enable_file_logging(
    path: str | Path,
    level: LogLevel | int = "INFO",
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    format: str = DEFAULT_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> RotatingFileHandler:
    """Write simulator logs to a size-rotated file.

    Long unattended runs (a stalled configuration left stepping overnight)
    log a line per stall transition, so the file is rotated at
    ``max_bytes`` and ``backup_count`` old files are kept.

    Args:
        path: Log file path. Parent directories are created.
        level: Log level name or int.
        max_bytes: Size at which the file is rotated.
        backup_count: Rotated files to keep.
        format: Log message format string.
        date_format: Date format for %(asctime)s.

    Returns:
        The created RotatingFileHandler.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    handler.setFormatter(logging.Formatter(format, date_format))
    _attach(handler, level)
    return handler


def enable_json_logging(
    level: LogLevel | int = "INFO",
    path: str | Path | None = None,
) -> logging.Handler:
    """Emit JSON log lines to stderr, or to a rotating file when ``path`` is given."""
    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            path, maxBytes=DEFAULT_MAX_BYTES, backupCount=DEFAULT_BACKUP_COUNT
        )
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    _attach(handler, level)
    return handler


def configure_from_env() -> None:
    """Configure logging from LSMSIM_* environment variables.

    Does nothing when neither LSMSIM_LOGGING nor LSMSIM_LOG_FILE is set.
    """
    level = os.environ.get("LSMSIM_LOGGING", "").upper()
    log_file = os.environ.get("LSMSIM_LOG_FILE", "")
    use_json = os.environ.get("LSMSIM_LOG_JSON", "") == "1"

    if not level and not log_file:
        return

    level = level or "INFO"

    if use_json:
        enable_json_logging(level=level, path=log_file or None)
    elif log_file:
        enable_file_logging(log_file, level=level)
    else:
        enable_console_logging(level=level)


def set_level(level: LogLevel | int) -> None:
    """Set the level of the ``lsmsimulator`` logger."""
    _get_logger().setLevel(_get_level(level))


def set_module_level(module: str, level: LogLevel | int) -> None:
    """Set the level for one submodule, e.g. ``set_module_level("storage.lsm_tree", "DEBUG")``."""
    logging.getLogger(f"{LOGGER_NAME}.{module}").setLevel(_get_level(level))


def disable_logging() -> None:
    """Remove every handler and silence the ``lsmsimulator`` logger."""
    logger = _get_logger()
    for handler in logger.handlers[:]:
        if not isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)
            handler.close()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.CRITICAL + 1)
