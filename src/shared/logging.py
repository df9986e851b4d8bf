"""Structured JSON logging with trace_id support."""
from __future__ import annotations

import contextvars
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Context variable for trace_id
trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "trace_id", default=""
)

# Record attributes copied into the JSON entry when a caller passes them
# through ``extra=``.
_EXTRA_FIELDS = ("package", "suite_id", "priority", "phase")


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def __init__(self, service_name: str = "unknown") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service_name": self.service_name,
            "logger": record.name,
            "trace_id": trace_id_var.get(""),
            "message": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry, default=str)


def setup_logging(service_name: str, level: str = "INFO") -> logging.Logger:
    """Configure structured JSON logging for a process.

    The handler is installed on the ``src`` logger so every module logger
    created with ``logging.getLogger(__name__)`` inherits it, and on a
    logger named after the service for top-level process messages.

    Args:
        service_name: Name of the service for log entries.
        level: Log level string (e.g. "INFO", "DEBUG").

    Returns:
        The service logger.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter(service_name=service_name))

    for name in ("src", service_name):
        target = logging.getLogger(name)
        target.setLevel(numeric_level)
        # Remove existing handlers
        target.handlers.clear()
        target.addHandler(handler)

    return logging.getLogger(service_name)


def new_trace_id() -> str:
    """Start a fresh trace for non-HTTP work (a suite run, a queue item)."""
    value = str(uuid.uuid4())
    trace_id_var.set(value)
    return value


class TraceIDMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware that sets a unique trace_id per request.

    An inbound ``X-Trace-ID`` header is honoured so a suite run and the
    plan request it sends share one trace.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_trace_id = request.headers.get("X-Trace-ID") or str(uuid.uuid4())
        trace_id_var.set(request_trace_id)
        response = await call_next(request)
        response.headers["X-Trace-ID"] = request_trace_id
        return response
