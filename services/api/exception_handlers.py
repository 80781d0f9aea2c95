"""FastAPI exception handlers for custom exceptions."""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from core.exceptions import (
    ChannelServeError,
    ConfigurationError,
    NotFoundError,
    PreconditionFailedError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)

AUTH_CHALLENGE = 'Basic realm="channels"'


async def channel_serve_exception_handler(request: Request, exc: ChannelServeError) -> JSONResponse:
    """Handle channel-server exceptions."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    headers: dict[str, str] = {}
    details = exc.details

    # Map exception types to HTTP status codes
    if isinstance(exc, UnauthorizedError):
        status_code = status.HTTP_401_UNAUTHORIZED
        headers["WWW-Authenticate"] = AUTH_CHALLENGE
    elif isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, PreconditionFailedError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, StorageError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        # Bucket and key names stay in the log.
        details = {}
    elif isinstance(exc, ConfigurationError):
        details = {}

    if status_code >= 500:
        logger.error(
            "Request failed: {type} - {message}",
            type=type(exc).__name__,
            message=str(exc),
            details=exc.details,
        )
    else:
        logger.info(
            "Request rejected: {type} - {message}",
            type=type(exc).__name__,
            message=str(exc),
        )

    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": details,
        },
        headers=headers or None,
    )
