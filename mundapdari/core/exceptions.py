"""Typed application errors and the handlers that render them.

Services raise :class:`AppError` subclasses; every error leaving the app
is rendered through :func:`error_body` so clients see one shape.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from mundapdari.config import settings
from mundapdari.core.responses import error_body

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None, errors: list | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors


class ValidationError(AppError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message)


class TooManyRequestsError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str = "Too many requests, please try again later"):
        super().__init__(message)


def _debug_details(exc: Exception) -> dict | None:
    if settings.DEBUG:
        return {"name": type(exc).__name__}
    return None


def _integrity_status(exc: IntegrityError) -> tuple[int, str]:
    """Map a driver-level constraint violation to a status and message."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == "23505":
        return status.HTTP_409_CONFLICT, "Resource already exists"
    if code == "23503":
        return status.HTTP_400_BAD_REQUEST, "Invalid reference to related resource"
    if code == "23502":
        return status.HTTP_400_BAD_REQUEST, "Required field is missing"

    # sqlite3 exposes the extended result code name on Python 3.11+
    name = getattr(orig, "sqlite_errorname", "") or ""
    text = str(orig)
    if name == "SQLITE_CONSTRAINT_UNIQUE" or "UNIQUE constraint failed" in text:
        return status.HTTP_409_CONFLICT, "Resource already exists"
    return status.HTTP_400_BAD_REQUEST, "Database constraint violation"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.errors, _debug_details(exc)),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({
            "field": ".".join(loc),
            "message": err.get("msg", "Invalid value"),
            "value": err.get("input"),
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body("Validation failed", errors),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        message = f"Route {request.method} {request.url.path} not found"
    else:
        message = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message),
        headers=getattr(exc, "headers", None),
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit exceeded for %s on %s", request.client.host if request.client else "-", request.url.path)
    error = TooManyRequestsError()
    response = JSONResponse(
        status_code=error.status_code,
        content=error_body(error.message),
    )
    limiter = getattr(request.app.state, "limiter", None)
    view_limit = getattr(request.state, "view_rate_limit", None)
    if limiter is not None and view_limit is not None:
        response = limiter._inject_headers(response, view_limit)
    return response


async def jwt_error_handler(request: Request, exc: JWTError) -> JSONResponse:
    message = "Token expired" if isinstance(exc, ExpiredSignatureError) else "Invalid token"
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=error_body(message),
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    status_code, message = _integrity_status(exc)
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=status_code, content=error_body(message))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", details=_debug_details(exc)),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(JWTError, jwt_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
