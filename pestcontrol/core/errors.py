# pestcontrol/core/errors.py
"""
Centralized error handling.

Every failure leaving the API goes through ``normalize_error`` and comes
out as an ``AppError``. Operational errors (expected, client-facing)
keep their message; anything else is logged in full and masked as a 500
outside development.
"""

import re
import traceback
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, NoResultFound
from starlette.exceptions import HTTPException as StarletteHTTPException

from pestcontrol.core.config import settings
from pestcontrol.core.logger import get_logger, request_context

logger = get_logger("errors")


# ***************************************************************
# 1. Error taxonomy
# ***************************************************************

class AppError(Exception):
    """Base error carrying an HTTP status code."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        is_operational: bool = True,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = is_operational
        # extra client-facing fields, e.g. {"errors": [...]}
        self.details = details or {}

    @property
    def status(self) -> str:
        return "fail" if str(self.status_code).startswith("4") else "error"


class BadRequest(AppError):
    def __init__(self, message: str = "Bad request", details: Optional[dict] = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details=details)


class Unauthenticated(AppError):
    def __init__(self, message: str = "Access denied. Please authenticate first."):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class TokenInvalid(Unauthenticated):
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class TokenExpired(Unauthenticated):
    def __init__(self, message: str = "Token expired"):
        super().__init__(message)


class Forbidden(AppError):
    def __init__(self, message: str = "Access denied. Insufficient permissions."):
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class NotFound(AppError):
    def __init__(self, message: str = "Record not found"):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class Conflict(AppError):
    def __init__(self, message: str = "Resource already exists"):
        super().__init__(message, status.HTTP_409_CONFLICT)


class RateLimited(AppError):
    def __init__(self, message: str = "Too many attempts. Please try again later."):
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS)


# ***************************************************************
# 2. Normalization
# ***************************************************************

_UNIQUE_PATTERNS = (
    re.compile(r"UNIQUE constraint failed: \w+\.(\w+)"),        # sqlite
    re.compile(r"Duplicate entry .* for key '(?:\w+\.)?(\w+)'"),  # mysql
    re.compile(r"Key \((\w+)\)=\(.*\) already exists"),           # postgresql
)


def _unique_field(text: str) -> Optional[str]:
    for pattern in _UNIQUE_PATTERNS:
        match = pattern.search(text)
        if match:
            field = match.group(1)
            # mysql reports the index name, e.g. ix_staff_email
            return field.split("_")[-1] if field.startswith(("ix_", "uq_")) else field
    return None


def handle_integrity_error(exc: IntegrityError) -> AppError:
    text = str(exc.orig) if exc.orig is not None else str(exc)
    lowered = text.lower()

    if "unique" in lowered or "duplicate" in lowered:
        field = _unique_field(text) or "field"
        return Conflict(f"{field[:1].upper()}{field[1:]} already exists")
    if "foreign key" in lowered:
        return BadRequest("Invalid reference to related record")
    if "not null" in lowered or "null value" in lowered or "cannot be null" in lowered:
        return BadRequest("Required relation missing")

    logger.error("Unhandled database integrity error", extra={"context": {"detail": text}})
    return AppError("Database operation failed", status.HTTP_500_INTERNAL_SERVER_ERROR)


def handle_validation_errors(errors: list) -> AppError:
    messages = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        msg = error.get("msg", "Invalid value")
        messages.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return BadRequest(f"Validation failed: {', '.join(messages)}")


def normalize_error(exc: Exception) -> AppError:
    """Maps any exception onto an AppError."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, IntegrityError):
        return handle_integrity_error(exc)
    if isinstance(exc, NoResultFound):
        return NotFound("Record not found")
    if isinstance(exc, ExpiredSignatureError):
        return TokenExpired("Token expired")
    if isinstance(exc, JWTError):
        return TokenInvalid("Invalid token")
    if isinstance(exc, (RequestValidationError, ValidationError)):
        return handle_validation_errors(exc.errors())
    if isinstance(exc, StarletteHTTPException):
        return AppError(str(exc.detail), exc.status_code)
    return AppError(str(exc) or exc.__class__.__name__, status.HTTP_500_INTERNAL_SERVER_ERROR, is_operational=False)


# ***************************************************************
# 3. Responses
# ***************************************************************

def build_error_response(error: AppError, original: Exception) -> JSONResponse:
    if settings.is_development:
        stack = "".join(traceback.format_exception(type(original), original, original.__traceback__))
        return JSONResponse(
            status_code=error.status_code,
            content={
                "success": False,
                "error": {
                    "message": error.message,
                    "stack": stack,
                    "statusCode": error.status_code,
                    "status": error.status,
                    **error.details,
                },
            },
        )

    if error.is_operational:
        return JSONResponse(
            status_code=error.status_code,
            content={"success": False, "message": error.message, **error.details},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Something went wrong!"},
    )


async def app_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = normalize_error(exc)
    context = {"url": str(request.url), "method": request.method, **request_context(request)}

    if error.is_operational:
        logger.info("Error %s: %s", error.status_code, error.message, extra={"context": context})
    else:
        logger.error(
            "Error %s: %s", error.status_code, error.message,
            extra={"context": context}, exc_info=(type(exc), exc, exc.__traceback__),
        )
    return build_error_response(error, exc)


async def not_found_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        exc = NotFound(f"Route {request.url.path} not found")
    return await app_error_handler(request, exc)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, app_error_handler)
    app.add_exception_handler(IntegrityError, app_error_handler)
    app.add_exception_handler(NoResultFound, app_error_handler)
    app.add_exception_handler(JWTError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, not_found_handler)
    app.add_exception_handler(Exception, app_error_handler)
