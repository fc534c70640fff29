"""Structured logging configuration and redaction helpers."""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, cast

from typing_extensions import override

if TYPE_CHECKING:
    from tsg.config.settings import LogLevel

# Correlation ID context variable for request tracing
correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

SESSION_TOKEN_LOG_PREFIX_CHARS = 20
PHONE_NUMBER_VISIBLE_CHARS = 5

_STANDARD_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
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
    },
)


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON documents."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as a JSON string."""
        log_data: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "correlation_id": correlation_id.get(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_data["stack_trace"] = self.formatStack(record.stack_info)

        protected_attrs = set(log_data.keys())
        record_dict = cast("dict[str, object]", record.__dict__)
        for key, value in record_dict.items():
            if key in _STANDARD_RECORD_ATTRS or key.startswith("_"):
                continue
            if key in protected_attrs:
                log_data[f"extra_{key}"] = value
                continue
            log_data[key] = value

        return json.dumps(log_data, default=str)


def init_logging(level: LogLevel) -> None:
    """Initialize structured logging for the application."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Keep pytest capture handlers so caplog-based tests still observe records.
    for h in root_logger.handlers[:]:
        if type(h).__name__ != "LogCaptureHandler":
            root_logger.removeHandler(h)

    root_logger.addHandler(handler)


def describe_session_token(token: str | None) -> str:
    """Render a session token for logs without exposing the full secret."""
    if not token:
        return "none"
    prefix = token[:SESSION_TOKEN_LOG_PREFIX_CHARS]
    return f"{prefix}... ({len(token)} chars)"


def mask_phone_number(phone_number: str | None) -> str | None:
    """Keep the country-code head of a phone number and mask the rest."""
    if not phone_number:
        return None
    return f"{phone_number[:PHONE_NUMBER_VISIBLE_CHARS]}***"
