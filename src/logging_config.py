"""
Structured logging configuration for Headline Harvester.

Supports both JSON (for production) and human-readable (for development) formats.
Configure via environment variables:
- LOG_FORMAT: 'json' or 'text' (default: 'text')
- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: 'INFO')
"""

import json
import logging
import os
import sys
from datetime import datetime, UTC
from pathlib import Path
from typing import Any

LOG_FILE_NAME = "harvester.log"

# LogRecord attributes that are not user-supplied context
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


def _context_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through extra={...} on the logging call"""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    Single-line JSON formatter for log shippers.

    Each record carries timestamp (UTC, ISO 8601), level, logger, message,
    the formatted exception if any, and every extra context field.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in _context_fields(record).items():
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Format: timestamp - logger - level - message [context_key=value ...]
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        line = f"{timestamp} - {record.name} - {record.levelname} - {record.getMessage()}"

        context = _context_fields(record)
        if context:
            line += " [" + ", ".join(f"{k}={v}" for k, v in context.items()) + "]"

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"

        return line


def get_log_level() -> int:
    """Get log level from the LOG_LEVEL environment variable."""
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def get_log_format() -> str:
    """Get log format from the LOG_FORMAT environment variable."""
    return os.environ.get("LOG_FORMAT", "text").lower()


def setup_logging(
    log_dir: str = "logs",
    verbose: bool = False,
    log_format: str | None = None,
    log_level: int | None = None,
) -> None:
    """
    Configure the root logger with a console and a file handler.

    Args:
        log_dir: Directory for the log file (created if missing)
        verbose: If True, sets level to DEBUG (overrides LOG_LEVEL)
        log_format: 'json' or 'text' (overrides LOG_FORMAT)
        log_level: Explicit level (overrides LOG_LEVEL and verbose)
    """
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    if log_level is not None:
        level = log_level
    elif verbose:
        level = logging.DEBUG
    else:
        level = get_log_level()

    fmt = log_format if log_format is not None else get_log_format()
    formatter = JSONFormatter() if fmt == "json" else TextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(Path(log_dir) / LOG_FILE_NAME)
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    for noisy in ("urllib3", "requests", "werkzeug", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Use extra={'key': 'value'} when logging to add context fields.

    Example:
        logger = get_logger(__name__)
        logger.info("Article accepted", extra={'url': url, 'channel': 'tech'})
    """
    return logging.getLogger(name)
