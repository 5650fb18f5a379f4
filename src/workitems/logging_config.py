"""Structured logging configuration for the Azure DevOps work item client.

- JSON structured logging with StructuredFormatter
- Logger hierarchy under the ado_workitems namespace
- Environment variable control (ADO_LOG_LEVEL, ADO_LOG_FORMAT)

Every module logs snake_case event names with an ``extra`` dict, e.g.::

    logger.warning("comments_fetch_failed", extra={"work_item_id": 42})
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

__all__ = [
    "LOGGER_NAMESPACE",
    "SENSITIVE_KEYS",
    "StructuredFormatter",
    "TextFormatter",
    "configure_logging",
]

LOGGER_NAMESPACE = "ado_workitems"

# Keys redacted from log context so a PAT never reaches a log sink
SENSITIVE_KEYS = {
    "password", "token", "secret", "pat", "api_key", "apikey",
    "authorization", "credential", "auth", "bearer",
}

# Attributes every LogRecord carries; anything else came in through extra=
_STANDARD_FIELDS = {
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
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    Outputs logs in JSON format with:
    - timestamp: UTC ISO 8601 format with 'Z' suffix
    - level: Log level name (INFO, ERROR, etc.)
    - logger: Logger name (ado_workitems hierarchy)
    - message: Log message (event name)
    - context: Extras dict merged from LogRecord attributes

    Sensitive keys (pat, token, authorization, ...) are redacted.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: LogRecord to format

        Returns:
            JSON string with structured log data
        """
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            k: ("[REDACTED]" if k.lower() in SENSITIVE_KEYS else v)
            for k, v in record.__dict__.items()
            if k not in _STANDARD_FIELDS and not k.startswith("_")
        }

        if extras:
            log_data["context"] = extras

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # default=str keeps NaN-bearing or enum extras serializable
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for development.

    Used when ADO_LOG_FORMAT=text for easier local debugging.
    """

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(
    level: Optional[str] = None, log_format: Optional[str] = None
) -> None:
    """Configure structured logging for all ado_workitems loggers.

    Args:
        level: Optional log level override. Falls back to ADO_LOG_LEVEL
               (default: INFO).
        log_format: Optional format override (json or text). Falls back to
               ADO_LOG_FORMAT (default: json).
    """
    if level is None:
        level = os.getenv("ADO_LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format is None:
        log_format = os.getenv("ADO_LOG_FORMAT", "json")

    if log_format.lower() == "text":
        formatter = TextFormatter()
    else:
        formatter = StructuredFormatter()

    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(log_level)

    # Idempotent: one handler no matter how often this runs
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    else:
        for handler in logger.handlers:
            handler.setFormatter(formatter)

    logger.propagate = False
