from points_service.middleware.request_context import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    app_error_handler,
    setup_request_context,
    unhandled_exception_handler,
)

__all__ = [
    "RequestIDMiddleware",
    "RequestLoggingMiddleware",
    "app_error_handler",
    "setup_request_context",
    "unhandled_exception_handler",
]
