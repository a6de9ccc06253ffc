from __future__ import annotations

from typing import Any

from vaultrag.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    403: _response("Not a workspace member", "ACCESS_DENIED", "Access denied to workspace"),
    404: _response("Not found", "NOT_FOUND", "Resource not found"),
    422: _response("Validation error", "REQUEST_VALIDATION_ERROR", "Validation error"),
    500: _response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
}

CHAT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    429: _response(
        "Daily interaction limit reached",
        "RATE_LIMITED",
        "Daily interaction limit reached (50/50). Try again tomorrow.",
        details={"count": 50, "limit": 50, "rate_limited": True},
    ),
    502: _response(
        "Language model failure",
        "UPSTREAM_MODEL_ERROR",
        "The assistant is temporarily unavailable. Please retry in a moment.",
    ),
    504: _response(
        "Language model timeout",
        "UPSTREAM_MODEL_TIMEOUT",
        "The assistant took too long to answer. Please retry in a moment.",
    ),
}
