"""
Exception handlers.

Every error leaves the API in one shape:

    {"success": false, "error", "error_code", "message", "status_code",
     "correlation_id", "details"?}

`error_code` is the stable value clients branch on (DUPLICATE_FILE,
NOTHING_TO_SAVE, CONFLICT, ...); `error` is the exception class name.
"""
import logging
import traceback
import uuid
from typing import Any, Dict, Mapping, Optional

from asgi_correlation_id import correlation_id as correlation_id_ctx
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import HTTP_422_UNPROCESSABLE_ENTITY, HTTP_500_INTERNAL_SERVER_ERROR

from ledgermatch.config.settings import settings
from .exceptions import MainException

logger = logging.getLogger("ledgermatch.exceptions")

# Failures a client may simply retry: backing service outage, matching timeout
RETRYABLE_ERROR_CODES = {"CONNECTION_ERROR", "TIMEOUT"}
RETRY_AFTER_SECONDS = 30


def _get_correlation_id() -> str:
    return correlation_id_ctx.get() or uuid.uuid4().hex[:8]


def _jsonable(obj: Any) -> Any:
    """Details may hold dates, decimals or tuples; anything unknown becomes a string."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, Mapping):
        return {str(key): _jsonable(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_jsonable(item) for item in obj]
    return str(obj)


def error_response(
    status_code: int,
    error_type: str,
    error_code: str,
    message: str,
    correlation_id: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = {
        "success": False,
        "error": error_type,
        "error_code": error_code,
        "message": message,
        "status_code": status_code,
        "correlation_id": correlation_id,
    }
    if details:
        body["details"] = _jsonable(details)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def main_exception_handler(request: Request, exc: MainException) -> JSONResponse:
    """Expected failures: rejected uploads, workflow conflicts, guarded-operation refusals."""
    correlation_id = _get_correlation_id()
    error_type = exc.__class__.__name__

    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "error_type": error_type,
            "error_code": exc.error_code,
        }
    )

    headers = None
    if exc.error_code in RETRYABLE_ERROR_CODES:
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}

    return error_response(
        exc.status_code, error_type, exc.error_code, exc.message, correlation_id,
        details=exc.details, headers=headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request schema errors, reported per field."""
    correlation_id = _get_correlation_id()
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg"),
            "type": error.get("type"),
        }
        for error in _jsonable(exc.errors())
    ]

    logger.warning(
        f"Invalid request on {request.method} {request.url.path}",
        extra={"correlation_id": correlation_id, "path": request.url.path, "errors": errors}
    )
    return error_response(
        HTTP_422_UNPROCESSABLE_ENTITY, "ValidationError", "VALIDATION_ERROR",
        "Request validation failed", correlation_id, details={"errors": errors},
    )


def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected. Internals are only exposed outside production."""
    correlation_id = _get_correlation_id()
    logger.error(
        f"Unhandled {exc.__class__.__name__} on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "query_params": dict(request.query_params),
            "error_type": exc.__class__.__name__,
        }
    )

    if settings.is_production:
        message = "An unexpected error occurred. Please try again later."
        details = None
    else:
        message = str(exc)
        details = {
            "exception_type": exc.__class__.__name__,
            "traceback": traceback.format_exception(exc)[-5:],
        }

    return error_response(
        HTTP_500_INTERNAL_SERVER_ERROR, "InternalServerError", "INTERNAL_ERROR",
        message, correlation_id, details=details,
    )
