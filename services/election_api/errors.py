"""Application errors and their HTTP rendering."""
import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from services.shared import get_current_timestamp

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base error carrying an HTTP status and a machine-readable code."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "SERVER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.headers = headers or {}


class ValidationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class Gone(AppError):
    status_code = status.HTTP_410_GONE
    code = "GONE"


class RateLimited(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, retry_after: int, headers: Optional[dict] = None):
        headers = dict(headers or {})
        headers["Retry-After"] = str(retry_after)
        super().__init__(message, headers=headers)
        self.retry_after = retry_after


def error_body(message: str, code: str) -> dict:
    """Standard error envelope."""
    return {
        "success": False,
        "message": message,
        "error": {"code": code, "message": message},
        "timestamp": get_current_timestamp(),
    }


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.code),
        headers=exc.headers
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid input data")
    if location:
        message = f"{location}: {message}"
    body = error_body(message, "VALIDATION_ERROR")
    body["error"]["details"] = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in errors
    ]
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", "SERVER_ERROR")
    )


def register_exception_handlers(app: FastAPI):
    """Attach the error handlers to an application."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
