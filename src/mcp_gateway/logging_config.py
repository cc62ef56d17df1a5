from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp_gateway.runtime.connections import Connection


class JsonFormatter(logging.Formatter):
    """Emit JSON-formatted log records with structured extras."""

    _STANDARD_ATTRS = {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        structured: dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, self.datefmt),
        }

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS and not key.startswith("_")
        }
        if extras:
            structured["extra"] = extras

        if record.exc_info:
            structured["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(structured, default=str)


def configure_logging(level: str = "INFO", *, debug: bool = False) -> None:
    log_level = "DEBUG" if debug else level.upper()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
        uvicorn_logger.setLevel(log_level)


def _connection_summary(connection: Connection, *, debug: bool) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "connection_id": connection.id,
        "peer": connection.peer,
        "connected_at": connection.connected_at.isoformat(),
        "idle_seconds": round(connection.idle_for(), 3),
        "initialized": connection.initialized,
        "in_flight": len(connection.in_flight),
    }
    if debug:
        summary["in_flight_ids"] = list(connection.in_flight)
    return summary


def log_failure(
    logger: logging.Logger,
    kind: str,
    error: BaseException,
    connection: Connection | None = None,
    *,
    debug: bool = False,
    level: int = logging.WARNING,
) -> None:
    """Record a ``connection``/``request``/``server`` failure.

    Stack traces are attached in debug mode only; nothing logged here is ever
    written back to a peer.
    """

    extra: dict[str, Any] = {
        "kind": kind,
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    code = getattr(error, "code", None)
    if code is not None:
        extra["error_code"] = int(code)
    if connection is not None:
        extra["connection"] = _connection_summary(connection, debug=debug)

    exc_info = (type(error), error, error.__traceback__) if debug else None
    logger.log(level, "MCP error", extra=extra, exc_info=exc_info)


__all__ = ["JsonFormatter", "configure_logging", "log_failure"]
