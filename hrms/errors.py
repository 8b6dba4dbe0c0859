"""
Error taxonomy and the FastAPI handlers that render it.

Handlers never leak exception text or tracebacks to the client; the original
error is only written to the server log.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .i18n import translate


log = structlog.get_logger()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "code": self.code,
            "message": self.message,
            "timestamp": _now_iso(),
        }
        if self.reason:
            body["reason"] = self.reason
        return body


class BadRequestError(AppError):
    status_code = 400
    code = "BAD_REQUEST"


class AuthenticationError(AppError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"

    def __init__(self, reason: str, message: str = "Authentication required"):
        super().__init__(message, reason=reason)


class AuthorizationError(AppError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"

    def __init__(self, reason: str = "forbidden", message: str = "Forbidden"):
        super().__init__(message, reason=reason)


class InternalError(AppError):
    status_code = 500
    code = "INTERNAL_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class StorageError(AppError):
    """Data-access failure; `code` tells callers what kind of failure it was."""

    NOT_FOUND = "not_found"
    CONSTRAINT_VIOLATION = "constraint_violation"
    CONNECTION_FAILURE = "connection_failure"
    UNKNOWN = "unknown"

    _status_by_code = {
        NOT_FOUND: 404,
        CONSTRAINT_VIOLATION: 409,
        CONNECTION_FAILURE: 503,
        UNKNOWN: 500,
    }

    def __init__(self, code: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, reason=code)
        self.storage_code = code
        self.cause = cause
        self.status_code = self._status_by_code.get(code, 500)
        self.code = "STORAGE_ERROR"


class RequestValidationFailed(Exception):
    """Schema mismatch on one or more request sources (400)."""

    def __init__(self, error: str, message_key: str, details: List[Dict[str, Any]]):
        super().__init__(error)
        self.error = error
        self.message_key = message_key
        self.details = details


def validation_error_body(request: Request, error: str, message_key: str, details: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "error": error,
        "message": translate(request, message_key),
        "details": details,
        "timestamp": _now_iso(),
    }


def _pydantic_details(errors) -> List[Dict[str, Any]]:
    out = []
    for e in errors:
        loc = [str(p) for p in e.get("loc", ()) if p not in ("body", "query", "path")]
        out.append({"field": ".".join(loc), "message": e.get("msg", ""), "code": e.get("type", "")})
    return out


async def _app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error(
            "request_failed",
            path=request.url.path,
            method=request.method,
            code=exc.code,
            reason=exc.reason,
            error=str(getattr(exc, "cause", None) or exc),
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def _validation_failed_handler(request: Request, exc: RequestValidationFailed):
    log.warning(
        "validation_failed",
        path=request.url.path,
        method=request.method,
        errors=exc.details,
        ip=request.client.host if request.client else None,
    )
    return JSONResponse(
        status_code=400,
        content=validation_error_body(request, exc.error, exc.message_key, exc.details),
    )


async def _framework_validation_handler(request: Request, exc: RequestValidationError):
    details = _pydantic_details(exc.errors())
    log.warning("validation_failed", path=request.url.path, method=request.method, errors=details)
    return JSONResponse(
        status_code=400,
        content=validation_error_body(request, "Validation failed", "validation_failed", details),
    )


async def _unhandled_error_handler(request: Request, exc: Exception):
    log.exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "code": "INTERNAL_ERROR",
            "message": translate(request, "internal_error"),
            "timestamp": _now_iso(),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationFailed, _validation_failed_handler)
    app.add_exception_handler(RequestValidationError, _framework_validation_handler)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
