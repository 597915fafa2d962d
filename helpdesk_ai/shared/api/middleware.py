"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from helpdesk_ai.core import (
    ApplicationException, ConfigurationException, DomainException,
    ExternalServiceException, ValidationException,
)
from helpdesk_ai.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds a correlation ID to every request.

    Reuses the caller's ``X-Correlation-ID`` header when present and
    echoes it on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its status code and response time."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        response_time = time.perf_counter() - start_time
        response.headers["X-Response-Time"] = f"{response_time:.3f}s"
        logger.info(
            "Request completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int(response_time * 1000)
            }
        )
        return response


def _error_body(request: Request, detail: str, exc: Exception) -> dict:
    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"
    return {
        "detail": detail,
        "correlation_id": getattr(request.state, "correlation_id", "unknown"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "debug_info": str(exc) if is_dev else None,
    }


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Map the application exception taxonomy onto HTTP status codes."""
    if isinstance(exc, ValidationException):
        status_code = 422
    elif isinstance(exc, DomainException):
        status_code = 409
    elif isinstance(exc, ConfigurationException):
        status_code = 503
    elif isinstance(exc, ExternalServiceException):
        status_code = 502
    else:
        status_code = 500

    logger.warning(
        "Application error",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "status_code": status_code,
        }
    )
    return JSONResponse(status_code=status_code, content=_error_body(request, exc.message, exc))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )
    return JSONResponse(status_code=500, content=_error_body(request, "Internal server error", exc))
