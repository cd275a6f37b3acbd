"""API error handling and response helpers."""

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from meter_cycles.services.errors import AppError

logger = logging.getLogger(__name__)


def error_response(error: AppError) -> Dict[str, Any]:
    """Create a standardized error response."""
    return {
        "error": {
            "code": error.code,
            "message": error.message,
            "details": error.details,
        }
    }


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render any AppError with its own HTTP status."""
    logger.info(
        "%s %s -> %d %s: %s",
        request.method,
        request.url.path,
        exc.http_status,
        exc.code,
        exc.message,
    )
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))


def register_error_handlers(app: FastAPI) -> None:
    """Install the AppError handler on the application."""
    app.add_exception_handler(AppError, app_error_handler)


__all__ = ["error_response", "register_error_handlers", "app_error_handler"]
