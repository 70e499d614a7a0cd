"""
Request context middleware and error handlers

- Request ID tracking (X-Request-ID in, X-Request-ID out)
- Request logging with duration
- AppError -> JSON envelope {"error", "message", "request_id"}
- Unexpected exceptions -> 500 with the same envelope, no stack trace
"""
import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from points_service.errors import AppError

logger = logging.getLogger(__name__)


# ============================================================================
# Request ID Middleware
# ============================================================================

class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Adds a unique Request ID to every request for tracing.

    Taken from the client's X-Request-ID header when present, generated
    otherwise, stored on request.state and echoed in the response headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        return response


# ============================================================================
# Request Logging Middleware
# ============================================================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status code and duration of each request"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = getattr(request.state, "request_id", "unknown")
        start_time = time.time()

        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else "unknown",
            }
        )

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
        )
        return response


# ============================================================================
# Exception Handlers
# ============================================================================

async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Translate engine errors to their status code and a clean envelope"""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        f"{exc.error_code}: {exc.message}",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": exc.status_code,
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "request_id": request_id,
        }
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log with traceback, answer 500 without details"""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception occurred",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "exception": str(exc),
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": request_id,
        }
    )


# ============================================================================
# Setup Function
# ============================================================================

def setup_request_context(app: FastAPI) -> None:
    """
    Register middleware and exception handlers.

    Middleware runs in reverse order of registration, so the request ID is
    assigned before the logging middleware reads it.
    """
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
