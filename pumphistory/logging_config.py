"""Structured logging configuration.

Log lines are JSON by default. Everything logged while a device session
is reconciled is tagged with that session's id, so the lines of one pump
download can be pulled out of a shared log.
"""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Id of the device session being reconciled, None outside a session
session_id_ctx: ContextVar[str | None] = ContextVar("session_id", default=None)


@contextmanager
def session_context(session_id: str) -> Iterator[str]:
    """Tag every log line emitted inside the block with ``session_id``."""
    token = session_id_ctx.set(session_id)
    try:
        yield session_id
    finally:
        session_id_ctx.reset(token)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "extra_fields", None) or {}


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: timestamp, level, service, logger, message, session_id (inside a
    session) and the structured fields passed to the logger. Errors also
    carry their source location.
    """

    def __init__(self, service_name: str = "pumphistory"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }

        session_id = session_id_ctx.get()
        if session_id:
            log_data["session_id"] = session_id

        log_data.update(_extra_fields(record))

        if record.levelno >= logging.ERROR:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs.

    Format: timestamp - service - level - [session_id] - message (fields)
    """

    def __init__(self, service_name: str = "pumphistory"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        session_id = session_id_ctx.get() or "-"
        line = (
            f"{timestamp} - {self.service_name} - {record.levelname} - "
            f"[{session_id}] - {record.getMessage()}"
        )
        fields = _extra_fields(record)
        if fields:
            line += " (" + " ".join(f"{k}={v}" for k, v in fields.items()) + ")"
        return line


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    service_name: str | None = None,
) -> None:
    """Install a single stdout handler on the root logger.

    Arguments left out are read from the application settings.

    Args:
        log_format: 'json' for structured logging, 'text' for human-readable
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name to include in logs
    """
    from pumphistory.config import settings

    log_format = log_format or settings.log_format
    log_level = log_level or settings.log_level
    service_name = service_name or settings.service_name
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_format.lower() == "json":
        formatter: logging.Formatter = JsonFormatter(service_name=service_name)
    else:
        formatter = TextFormatter(service_name=service_name)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


class StructuredLogger:
    """Logger wrapper taking structured fields as keyword arguments.

    ``logger.warning("Clock jump", index=4)`` attaches ``{"index": 4}`` to
    the record for the formatters above.
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, extra_fields: dict[str, Any]) -> None:
        extra = {"extra_fields": extra_fields} if extra_fields else {}
        self._logger.log(level, msg, extra=extra)

    def debug(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.DEBUG, msg, extra_fields)

    def info(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.INFO, msg, extra_fields)

    def warning(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.WARNING, msg, extra_fields)

    def error(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.ERROR, msg, extra_fields)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger, typically for ``__name__``."""
    return StructuredLogger(name)
