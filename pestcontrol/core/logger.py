# pestcontrol/core/logger.py
"""
Structured logging for the pest-control backend.

JSON lines in production, readable console lines elsewhere. Security
events (any authentication or authorization failure) go through
``log_security_event`` so they share one shape:

    log_security_event("Cross-company access attempt",
                       user_id=user.id, path=request.url.path, ip=ip)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request

from pestcontrol.core.config import settings

LOGGER_NAME = "pestcontrol"

_RESERVED = {
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "message", "taskName",
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, extra fields included."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED:
                log_data[key] = value
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[35m",
        "INFO": "\033[36m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        msg = f"[{timestamp}] {color}{record.levelname:8}{self.RESET} {record.name}: {record.getMessage()}"
        context = getattr(record, "context", None)
        if context:
            msg += f" {json.dumps(context, default=str)}"
        if record.exc_info:
            msg += f"\n{self.formatException(record.exc_info)}"
        return msg


def setup_logging(level: Optional[str] = None, json_format: Optional[bool] = None) -> None:
    """Configures the application logger. Safe to call more than once."""
    level = (level or settings.LOG_LEVEL).upper()
    if json_format is None:
        json_format = settings.is_production

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())
    logger.addHandler(handler)

    # Keep records reachable by root handlers (pytest's caplog among them).
    logger.propagate = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not name or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    if name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


security_logger = get_logger("security")
auth_logger = get_logger("auth")


def request_context(request: Optional[Request]) -> dict[str, Any]:
    """ip, user agent and path of a request, for log context."""
    if request is None:
        return {}
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "path": request.url.path,
    }


def log_security_event(event: str, **context: Any) -> None:
    security_logger.warning(
        "Security Event: %s", event, extra={"event": event, "context": context}
    )


def log_auth(action: str, email: str, success: bool, reason: Optional[str] = None) -> None:
    context: dict[str, Any] = {"action": action, "email": email, "success": success}
    if reason:
        context["reason"] = reason
    level = logging.INFO if success else logging.WARNING
    auth_logger.log(
        level,
        "Auth %s: %s - %s", action, email, "SUCCESS" if success else "FAILED",
        extra={"context": context},
    )
