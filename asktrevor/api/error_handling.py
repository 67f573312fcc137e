from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from asktrevor.logging import get_logger
from asktrevor.service.errors import ServiceError
from asktrevor.service.relay import CORS_HEADERS, GENERIC_ERROR_MESSAGE
from asktrevor.storage.errors import ConstraintViolation, StoreUnavailable

logger = get_logger(__name__)

# Stable error codes by HTTP status
_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    402: "payment_required",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    429: "rate_limited",
    500: "server_error",
    503: "unavailable",
}

_VALUE_ERROR_PREFIX = "Value error, "


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "server_error")


def _error_response(status_code: int, message: str, code: Optional[str] = None) -> JSONResponse:
    """Render ``{"error": message, "code": code}`` with the CORS headers every function sends."""
    payload = {"error": message, "code": code or _error_code_for_status(status_code)}
    return JSONResponse(status_code=status_code, content=payload, headers=dict(CORS_HEADERS))


def _field_path(loc: tuple) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "header")]
    return ".".join(parts)


def _validation_message(error: dict[str, Any]) -> str:
    """Message for the first failed constraint.

    Messages raised by our own validators are returned as written; pydantic's
    built-in constraint messages are prefixed with the field path.
    """
    if error.get("type") == "json_invalid":
        return "Invalid JSON body"
    message = str(error.get("msg", "invalid request"))
    if error.get("type") == "value_error":
        return message[len(_VALUE_ERROR_PREFIX):] if message.startswith(_VALUE_ERROR_PREFIX) else message
    path = _field_path(tuple(error.get("loc", ())))
    return f"{path}: {message}" if path else message


def register_exception_handlers(app: FastAPI) -> None:
    """Install the JSON error envelope for domain, storage and framework errors."""

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        message = _validation_message(first)
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            field=_field_path(tuple(first.get("loc", ()))),
            message=message,
            error_count=len(errors),
        )
        return _error_response(400, message, code="validation_error")

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, code="conflict")

    @app.exception_handler(StoreUnavailable)
    async def handle_store_unavailable(request: Request, exc: StoreUnavailable):
        logger.error(
            "store_unavailable",
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        return _error_response(500, GENERIC_ERROR_MESSAGE, code="server_error")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(exc.status_code, exc.message, code=exc.error_code)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        else:
            logger.warning(
                "http_client_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, GENERIC_ERROR_MESSAGE, code="server_error")
