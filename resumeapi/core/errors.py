"""Error normalization and handlers."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from resumeapi.core.logging import get_request_id

logger = logging.getLogger("resumeapi")


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class UnauthorizedError(AppError):
    code = "unauthorized"
    status_code = 401


class PaymentRequiredError(AppError):
    """Raised when the caller's plan does not cover a gated feature."""
    code = "payment_required"
    status_code = 402


class NothingToSyncError(AppError):
    """No provider subscription could be found for the user."""
    code = "nothing_to_sync"
    status_code = 400


class BillingNotConfiguredError(AppError):
    code = "billing_not_configured"
    status_code = 500

    def __init__(self, message: str = "Payment system is not configured. Please check server configuration.", **kwargs):
        super().__init__(message, **kwargs)


class BillingOperationError(AppError):
    """Provider call failed in a way the caller should see (4xx)."""
    code = "billing_error"
    status_code = 400


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(request: Request, status_code: int, code: str, message: str, request_id: Optional[str] = None) -> JSONResponse:
    """Uniform error body: {"error": {code, message, request_id}, "detail": message}."""
    rid = request_id or _request_id(request)
    response = JSONResponse(
        status_code=status_code,
        content={
            "error": {"code": code, "message": message, "request_id": rid},
            "detail": message,
        },
    )
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "app.error",
        extra={"error_code": exc.code, "error_message": exc.message, "status": exc.status_code, "path": request.url.path},
    )
    return error_response(request, exc.status_code, exc.code, exc.message, exc.request_id)


async def http_error_handler(request: Request, exc: HTTPException):
    code = "not_found" if exc.status_code == 404 else "http_error"
    logger.warning("http.error", extra={"error_code": code, "status": exc.status_code, "path": request.url.path})
    return error_response(request, exc.status_code, code, exc.detail or "HTTP error")


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled.exception", exc_info=exc, extra={"error_code": "internal_error", "path": request.url.path})
    return error_response(request, 500, "internal_error", "Unexpected error")
