"""Standardized response utilities."""

from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from app.utils.exceptions import EngineError, RateLimitExceededError


def success(
    data: Any = None,
    message: str = "Success",
) -> dict:
    """Create a standardized success response."""
    response = {
        "success": True,
        "message": message,
    }
    if data is not None:
        response["data"] = data
    return response


def error_response(
    code: str,
    message: str,
    status_code: int = status.HTTP_400_BAD_REQUEST,
    details: dict | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code (e.g., 'VALIDATION_ERROR', 'RATE_LIMITED')
        message: Human-readable error message
        status_code: HTTP status code
        details: Additional error details
        headers: Extra response headers (e.g. Retry-After)

    Returns:
        JSONResponse with error structure
    """
    content = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=headers,
    )


def engine_error_response(exc: EngineError) -> JSONResponse:
    """Map an engine error onto the error envelope and its HTTP status."""
    headers = None
    if isinstance(exc, RateLimitExceededError) and exc.reset_time is not None:
        headers = {"X-RateLimit-Reset": exc.reset_time.isoformat()}

    return error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        headers=headers,
    )


def rate_limited_error(
    message: str,
    retry_after_seconds: int,
    reset_time: str | None = None,
) -> JSONResponse:
    """Create a 429 response with a Retry-After header."""
    return error_response(
        code="RATE_LIMITED",
        message=message,
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        details={"reset_time": reset_time} if reset_time else None,
        headers={"Retry-After": str(max(retry_after_seconds, 0))},
    )


def forbidden_error(
    message: str = "You don't have permission to access this resource",
    code: str = "FORBIDDEN",
) -> JSONResponse:
    return error_response(
        code=code,
        message=message,
        status_code=status.HTTP_403_FORBIDDEN,
    )


def internal_error(
    message: str = "An unexpected error occurred",
) -> JSONResponse:
    return error_response(
        code="INTERNAL_ERROR",
        message=message,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
