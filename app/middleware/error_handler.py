"""Error handling middleware."""

from typing import Any

import structlog
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import AppException

logger = structlog.get_logger(__name__)


def error_response(
    request: Request,
    status_code: int,
    error: str,
    code: str,
    message: Any,
    **extra: Any,
) -> JSONResponse:
    """Build the JSON error envelope shared by every handler."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "code": code,
            "message": message,
            **extra,
            "path": str(request.url),
        },
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle application exceptions.

    The exception class name and its ``code`` identify the failure; the
    status code comes from the exception.
    """
    if exc.status_code >= 500:
        logger.warning("request_rejected", code=exc.code, message=exc.message)
    return error_response(
        request, exc.status_code, exc.__class__.__name__, exc.code, exc.message
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle routing errors such as unknown paths and methods."""
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return error_response(request, exc.status_code, "HTTPException", code, exc.detail)


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle validation errors.

    Args:
        request: Request object
        exc: Validation exception

    Returns:
        JSON error response with validation details
    """
    return error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ValidationError",
        "VALIDATION_ERROR",
        "Request validation failed",
        details=jsonable_errors(exc),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation error details without the non-serializable ``ctx`` values."""
    return [
        {key: value for key, value in error.items() if key in ("loc", "msg", "type")}
        for error in exc.errors()
    ]


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle requests over the per-client limit.

    Must stay synchronous: ``SlowAPIMiddleware`` calls it without awaiting.
    """
    logger.warning("rate_limit_exceeded", client=request.client.host if request.client else None)
    return error_response(
        request,
        status.HTTP_429_TOO_MANY_REQUESTS,
        "RateLimitExceeded",
        "RATE_LIMIT_EXCEEDED",
        "Too many requests from this IP, please try again later.",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=exc)
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "InternalServerError",
        "INTERNAL_ERROR",
        "An unexpected error occurred",
    )
