"""Logging setup: plain text for development, JSON lines for production."""

import json
import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

# uid of the authenticated caller, attached to every record emitted while
# a request is being handled
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "message", "taskName", "user_id",
}


def set_user_id(user_id: str) -> None:
    user_id_var.set(user_id)


def get_user_id() -> str:
    return user_id_var.get() or ""


class JSONFormatter(logging.Formatter):
    """Structured formatter for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        user_id = get_user_id()
        if user_id:
            log_data["user_id"] = user_id
        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value
        return json.dumps(log_data, default=str)


class ContextualFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.user_id = get_user_id() or "-"
        return super().format(record)


def configure_logging() -> logging.Logger:
    """Attach a single stdout handler to the package logger."""

    logger = logging.getLogger("filetracker")
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level, logging.INFO))
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if os.getenv("LOG_FORMAT", "plain").lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            ContextualFormatter(
                "%(asctime)s | %(levelname)-8s | [%(user_id)s] | %(name)s:%(lineno)d | %(message)s"
            )
        )
    logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return logger
