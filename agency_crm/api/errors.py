"""Exception handlers translating typed failures into JSON error responses."""

from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from agency_crm.errors import AuthServiceError

logger = structlog.get_logger(__name__)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid4())


def _error_response(
    status_code: int, error: str, detail: str, correlation_id: str
) -> JSONResponse:
    headers = {"X-Correlation-Id": correlation_id}
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers=headers,
    )


async def service_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    """Map AuthServiceError subclasses to their status code and error code."""
    correlation_id = _correlation_id(request)

    logger.info(
        "request_rejected",
        path=request.url.path,
        status_code=exc.status_code,
        error=exc.error_code,
    )

    return _error_response(exc.status_code, exc.error_code, exc.message, correlation_id)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with user-friendly messages.

    Returns 400 Bad Request naming the first offending field.
    """
    correlation_id = _correlation_id(request)

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    # Raw input is left out of the log; it may hold a password
    logger.warning(
        "validation_error",
        path=request.url.path,
        detail=detail,
    )

    return _error_response(
        status.HTTP_400_BAD_REQUEST, "validation_error", detail, correlation_id
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
