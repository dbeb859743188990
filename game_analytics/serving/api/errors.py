"""
API Error Handling

Maps core exceptions to HTTP responses with a consistent error envelope:

    {"error": {"code": "ValidationError", "message": "...", "details": {...}}}
"""

from typing import Dict, Type

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from game_analytics.core.exceptions import (
    ConfigurationError,
    ContentionExceeded,
    GameAnalyticsError,
    NotFoundError,
    StorageUnavailable,
    ValidationError,
)

logger = structlog.get_logger(__name__)

STATUS_CODES: Dict[Type[GameAnalyticsError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConfigurationError: status.HTTP_400_BAD_REQUEST,
    ContentionExceeded: status.HTTP_503_SERVICE_UNAVAILABLE,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: GameAnalyticsError) -> int:
    """HTTP status for a core exception, 500 when unmapped"""
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def analytics_error_handler(request: Request, exc: GameAnalyticsError) -> JSONResponse:
    """Handle errors raised by the analytics core."""
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed",
        error_code=type(exc).__name__,
        error_message=exc.message,
        status_code=status_code,
        path=request.url.path,
    )

    headers = {"Retry-After": "1"} if status_code == status.HTTP_503_SERVICE_UNAVAILABLE else None
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": type(exc).__name__,
                "message": exc.message,
                "details": exc.details,
            }
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GameAnalyticsError, analytics_error_handler)
