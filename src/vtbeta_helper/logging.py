"""
Logging setup for vtbeta-helper.

All modules log through children of the "vtbeta_helper" logger. Records are
written to stderr, one JSON object per line when json_format is on (for runs
started by a scheduler) or as plain text for interactive use. Values passed
through ``extra=`` become top-level keys of the JSON object.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from vtbeta_helper.config import LoggingConfig

ROOT_LOGGER_NAME = "vtbeta_helper"

TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came from `extra`
_RESERVED_RECORD_KEYS = frozenset(
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


class JSONFormatter(logging.Formatter):
    """
    Render a record as a single-line JSON object.

    Keys: timestamp (UTC, ISO 8601), level, logger, message, exception when
    one is attached, plus every non-None ``extra`` field.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        return json.dumps(entry, default=str)


def _make_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter()
    return logging.Formatter(TEXT_LOG_FORMAT)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    log_to_console: bool = True,
) -> logging.Logger:
    """
    Install the stderr handler on the package logger.

    Calling it again replaces the previous handler. The package logger stops
    propagating to the root logger so records are not printed twice.

    Args:
        config: Logging section of the app config. Takes precedence over the
            keyword arguments.
        level: Level name used without a config.
        json_format: Emit JSON lines instead of plain text.
        log_to_console: Attach the stderr handler at all.

    Returns:
        The package logger.
    """
    if config is not None:
        level = config.level
        json_format = config.json_format
        log_to_console = config.log_to_console

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    if log_to_console:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(numeric_level)
        handler.setFormatter(_make_formatter(json_format))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child of the package logger, prefixing name if needed."""
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
