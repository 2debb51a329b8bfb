from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import uuid4

from flask import Flask, g, has_request_context, request, session

from artisan_market.config import Config

# Attributes every LogRecord carries; anything else arrived through ``extra=``
_RESERVED_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "request_id",
    "path",
    "method",
    "user_id",
    "role",
}


class RequestContextFilter(logging.Filter):
    """Inject Flask request context information into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if has_request_context():
            record.request_id = getattr(g, "request_id", None)
            record.path = request.path
            record.method = request.method
            record.user_id = session.get("user_id")
            record.role = session.get("role")
        else:
            record.request_id = None
            record.path = None
            record.method = None
            record.user_id = None
            record.role = None
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "path": getattr(record, "path", None),
            "method": getattr(record, "method", None),
            "user_id": getattr(record, "user_id", None),
            "role": getattr(record, "role", None),
        }
        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(app: Flask) -> None:
    """Configure global logging once, respecting Config toggles."""

    if not Config.STRUCTURED_LOGS_ENABLED:
        app.logger.setLevel(Config.LOG_LEVEL)
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(Config.LOG_LEVEL)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestContextFilter())

    # Replace handlers so a reload does not duplicate output
    root_logger.handlers = [
        existing for existing in root_logger.handlers if not isinstance(existing, logging.StreamHandler)
        or getattr(existing, "stream", None) not in (sys.stdout, sys.stderr)
    ] + [handler]
    app.logger.handlers = [handler]
    app.logger.propagate = False

    app.logger.debug("Structured logging configured.")


def ensure_request_id() -> str:
    """Return the active request id, generating one if needed."""
    if getattr(g, "request_id", None):
        return g.request_id
    incoming = request.headers.get(Config.REQUEST_ID_HEADER)
    g.request_id = incoming or str(uuid4())
    return g.request_id
