from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class NotFoundError(ApiError):
    def __init__(self, code: str, message: str):
        super().__init__(404, code, message)


class ValidationError(ApiError):
    """Rejected input. Nothing has been written when this is raised."""

    def __init__(self, code: str, message: str):
        super().__init__(422, code, message)


class LeaveValidationError(ValidationError):
    pass


class CheckValidationError(ValidationError):
    pass


class StateConflictError(ApiError):
    """The target is no longer in a state that allows the transition.

    Not retried automatically; the caller has to re-read current state.
    """

    def __init__(self, code: str, message: str):
        super().__init__(409, code, message)


class StorageUnavailableError(ApiError):
    def __init__(self, message: str = "Storage is temporarily unavailable, retry the request."):
        super().__init__(503, "STORAGE_UNAVAILABLE", message)


class ConfigurationError(Exception):
    """Bad or missing company settings. Always recovered from with defaults."""


def report_integrity_warning(logger: logging.Logger, code: str, **details: Any) -> None:
    logger.warning(
        "integrity_warning",
        extra={"integrity_warning": code, **details},
    )


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)


_HTTP_ERROR_CODES = {
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def register_exception_handlers(app: FastAPI, logger: logging.Logger) -> None:
    """Every failure leaves the API as ``{"error": {"code", "message", "request_id"}}``."""

    def _request_extra(request: Request, **extra: Any) -> dict[str, Any]:
        return {
            "request_id": get_request_id(request),
            "path": request.url.path,
            "method": request.method,
            **extra,
        }

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message)

    @app.exception_handler(OperationalError)
    async def _storage_error(request: Request, exc: OperationalError) -> JSONResponse:
        logger.warning("storage_unavailable", extra=_request_extra(request, error=exc.__class__.__name__))
        unavailable = StorageUnavailableError()
        return error_response(
            request,
            status_code=unavailable.status_code,
            code=unavailable.code,
            message=unavailable.message,
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return error_response(
            request,
            status_code=exc.status_code,
            code=_HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
            message=str(exc.detail) if exc.detail else "Request failed.",
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(request, status_code=422, code="VALIDATION_ERROR", message=str(exc.errors()))

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", extra=_request_extra(request))
        return error_response(request, status_code=500, code="INTERNAL_ERROR", message="Unexpected server error.")
