"""
Application errors.

Every error raised by the engine is an AppError subclass carrying the HTTP
status the REST layer answers with. Routers never build HTTPException for
engine failures; the handler registered in main.py translates them.
"""


class AppError(Exception):
    """Base error with an HTTP status code and a client-safe message."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    status_code = 400
    error_code = "validation_error"


class NotFoundError(AppError):
    status_code = 404
    error_code = "not_found"


class ConflictError(AppError):
    status_code = 409
    error_code = "conflict"


class ConcurrencyError(ConflictError):
    """Optimistic-concurrency retries on a student profile were exhausted."""

    error_code = "concurrent_update"
