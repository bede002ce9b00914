"""Structured logging configuration for the secrets engine."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Final

PACKAGE_LOGGER: Final[str] = "bookstore_secrets"

_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    {
        "args",
        "msg",
        "levelno",
        "levelname",
        "name",
        "module",
        "pathname",
        "filename",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)

# Never let a credential reach the log sink, even through ``extra=``.
_REDACTED_FIELDS: Final[frozenset[str]] = frozenset(
    {"password", "access_token", "assertion", "private_key", "token", "secret_value"}
)


class JsonFormatter(logging.Formatter):
    """Serialize log records as JSON for easier ingestion."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited docstring
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key.startswith("_") or key in payload or key in _RECORD_ATTRIBUTES:
                continue
            payload[key] = "***" if key.lower() in _REDACTED_FIELDS else value

        return json.dumps(payload, default=str)


def configure_logging(level: str) -> logging.Logger:
    """Attach the JSON formatter to the package logger and set its level."""

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    # Avoid duplicate handlers when a composition root is rebuilt in-process
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    logger.propagate = False
    logger.debug("Logging configured", extra={"log_level": level})
    return logger
