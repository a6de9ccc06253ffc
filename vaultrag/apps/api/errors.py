from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from vaultrag.apps.api.response import error_response, is_versioned_request
from vaultrag.core.errors import (
    AccessDeniedError,
    DatabaseError,
    FileNotFoundInWorkspaceError,
    ModelConfigError,
    ModelTimeoutError,
    RateLimitExceededError,
    UpstreamModelError,
    VaultError,
)


logger = logging.getLogger(__name__)

# Model failures never expose provider detail to end users.
MODEL_ERROR_MESSAGE = "The assistant is temporarily unavailable. Please retry in a moment."
MODEL_TIMEOUT_MESSAGE = "The assistant took too long to answer. Please retry in a moment."

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    403: "ACCESS_DENIED",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_MODEL_ERROR",
    503: "SERVICE_UNAVAILABLE",
    504: "UPSTREAM_MODEL_TIMEOUT",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def map_error(exc: Exception) -> tuple[int, str, str, dict[str, Any] | None]:
    """Map an exception to ``(status, code, message, details)`` without leaking internals."""
    if isinstance(exc, AccessDeniedError):
        return 403, "ACCESS_DENIED", str(exc), None
    if isinstance(exc, FileNotFoundInWorkspaceError):
        return 404, "NOT_FOUND", str(exc), None
    if isinstance(exc, RateLimitExceededError):
        return 429, "RATE_LIMITED", str(exc), {"count": exc.count, "limit": exc.limit, "rate_limited": True}
    if isinstance(exc, ModelTimeoutError):
        return 504, "UPSTREAM_MODEL_TIMEOUT", MODEL_TIMEOUT_MESSAGE, None
    if isinstance(exc, ModelConfigError):
        return 502, "UPSTREAM_MODEL_ERROR", MODEL_ERROR_MESSAGE, None
    if isinstance(exc, UpstreamModelError):
        return 502, "UPSTREAM_MODEL_ERROR", MODEL_ERROR_MESSAGE, None
    if isinstance(exc, (DatabaseError, SQLAlchemyError)):
        return 500, "DB_ERROR", "Database error. Check server logs.", None
    return 500, "INTERNAL_ERROR", "Internal server error", None


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from FastAPI HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    status_code, code, message, details = map_error(exc)
    if status_code >= 500:
        logger.error("request_failed path=%s code=%s", request.url.path, code, exc_info=exc)
    if not is_versioned_request(request):
        content: dict[str, Any] = {"error": message}
        if details:
            content.update(details)
        return JSONResponse(content=content, status_code=status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.errors()}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("unhandled_exception path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
