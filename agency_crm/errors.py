"""Typed failures raised by the auth core and mapped to HTTP responses."""

from typing import Optional


class AuthServiceError(Exception):
    """Base class for errors surfaced to the HTTP layer.

    Each subclass carries the HTTP status code and a stable error code so
    the exception handler can build the response without inspecting the
    message.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(self, message: str, *, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class ValidationError(AuthServiceError):
    """Malformed input (400)."""

    status_code = 400
    error_code = "validation_error"


class UnauthorizedError(AuthServiceError):
    """Bad credentials, locked or deactivated account, bad token (401)."""

    status_code = 401
    error_code = "unauthorized"


class InvalidTokenError(UnauthorizedError):
    """Signed token failed verification (401)."""


class ForbiddenError(AuthServiceError):
    """Authenticated but not permitted (403)."""

    status_code = 403
    error_code = "forbidden"


class NotFoundError(AuthServiceError):
    """Account vanished mid-operation (404)."""

    status_code = 404
    error_code = "not_found"


class ConflictError(AuthServiceError):
    """Duplicate email on registration (409)."""

    status_code = 409
    error_code = "conflict"
