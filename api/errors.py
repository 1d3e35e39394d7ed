"""
Error taxonomy and the single error-classification funnel for the API.

Every failure raised while handling a request ends up in ``handle_error``:
validation defects, identifier cast failures and duplicate keys become 400s,
operational ``AppError``s keep their own status and message, anything else
becomes a generic 500. In development mode the raw failure is echoed instead.
"""

import traceback
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong!"

# pydantic error types whose message is already written for end users
CUSTOM_ERROR_TYPES = {"discount_price", "password_mismatch"}

# Location prefixes FastAPI adds to request validation errors
REQUEST_LOCATIONS = {"body", "query", "path", "header", "cookie"}


class AppError(Exception):
    """Operational error raised intentionally with a status code and a safe message."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = "fail" if str(status_code).startswith("4") else "error"
        self.is_operational = True


class CastError(Exception):
    """Raised when an identifier or query value cannot be coerced to its type."""

    def __init__(self, path: str, value: Any, kind: str = "ObjectId"):
        super().__init__(f"Cast to {kind} failed for value \"{value}\" at path \"{path}\"")
        self.path = path
        self.value = value
        self.kind = kind


class ErrorResponse(BaseModel):
    """Error envelope returned to clients."""
    status: str = Field(..., description="fail for client errors, error for server faults")
    message: str = Field(..., description="Error message")
    error: Optional[Dict[str, Any]] = Field(None, description="Raw failure (development only)")
    stack: Optional[str] = Field(None, description="Stack trace (development only)")


def _field_name(loc) -> str:
    parts = [str(part) for part in loc]
    if parts and parts[0] in REQUEST_LOCATIONS:
        parts = parts[1:]
    return ".".join(parts)


def handle_validation_error(errors: List[Dict[str, Any]]) -> AppError:
    """Convert the first field defect of a validation failure into a 400."""
    if not errors:
        return AppError("Invalid input data.", status.HTTP_400_BAD_REQUEST)
    first = errors[0]
    field = _field_name(first.get("loc", ()))
    message = first.get("msg", "Invalid value")
    if first.get("type") not in CUSTOM_ERROR_TYPES and field:
        message = f"{field}: {message}"
    return AppError(message, status.HTTP_400_BAD_REQUEST)


def handle_cast_error(exc: CastError) -> AppError:
    return AppError(f"Invalid {exc.path}: {exc.value}.", status.HTTP_400_BAD_REQUEST)


def handle_duplicate_key_error(exc: DuplicateKeyError) -> AppError:
    details = exc.details or {}
    key_value = details.get("keyValue") or {}
    if key_value:
        field, value = next(iter(key_value.items()))
        message = f"Duplicate field value: {field} \"{value}\". Please use another value."
    else:
        message = "Duplicate field value. Please use another value."
    return AppError(message, status.HTTP_400_BAD_REQUEST)


def classify_error(exc: Exception) -> AppError:
    """
    Normalize an arbitrary failure into an operational AppError.

    Precedence: validation defect, cast failure, duplicate key,
    operational error, then a generic server error.
    """
    if isinstance(exc, (ValidationError, RequestValidationError)):
        return handle_validation_error(list(exc.errors()))
    if isinstance(exc, CastError):
        return handle_cast_error(exc)
    if isinstance(exc, DuplicateKeyError):
        return handle_duplicate_key_error(exc)
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, StarletteHTTPException):
        return AppError(str(exc.detail), exc.status_code)
    return AppError(GENERIC_ERROR_MESSAGE, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _raw_error(exc: Exception) -> Dict[str, Any]:
    raw = {"name": type(exc).__name__}
    for key, value in vars(exc).items():
        if key.startswith("_"):
            continue
        raw[key] = value if isinstance(value, (str, int, float, bool, type(None))) else repr(value)
    return raw


def send_error_dev(exc: Exception) -> JSONResponse:
    """Echo the raw failure with its stack trace."""
    status_code = getattr(exc, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR)
    error_status = getattr(exc, "status", None)
    if not isinstance(error_status, str):
        error_status = "fail" if str(status_code).startswith("4") else "error"
    body = ErrorResponse(
        status=error_status,
        message=str(getattr(exc, "message", None) or getattr(exc, "detail", None) or str(exc) or type(exc).__name__),
        error=_raw_error(exc),
        stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def send_error_prod(exc: Exception) -> JSONResponse:
    """Classify the failure and send only the safe status and message."""
    error = classify_error(exc)
    body = ErrorResponse(status=error.status, message=error.message)
    return JSONResponse(status_code=error.status_code, content=body.model_dump(exclude_none=True))


async def handle_error(request: Request, exc: Exception) -> JSONResponse:
    """Global error handler for every failure raised while serving a request."""
    settings = request.app.state.settings
    error = classify_error(exc)

    if error.status_code >= 500:
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
    else:
        logger.info(
            "Request failed",
            path=request.url.path,
            method=request.method,
            status_code=error.status_code,
            message=error.message,
        )

    if settings.is_development():
        return send_error_dev(exc)
    return send_error_prod(exc)


def register_error_handlers(app: FastAPI) -> None:
    """Route every failure type through ``handle_error``."""
    for exc_class in (
        AppError,
        CastError,
        ValidationError,
        RequestValidationError,
        DuplicateKeyError,
        StarletteHTTPException,
        Exception,
    ):
        app.add_exception_handler(exc_class, handle_error)
