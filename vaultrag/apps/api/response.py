from __future__ import annotations

import re
from typing import Any, Generic, TypeVar

from fastapi import Request
from pydantic import BaseModel, Field

from vaultrag.services.chat import new_request_id


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"

# Request ids are echoed into SSE events and interaction logs.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = Field(default=API_VERSION)


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    """Return the request id for this call, assigning one on first use.

    A client-supplied X-Request-Id is reused when it is a short token; anything
    else is replaced with a generated id so it cannot pollute the audit trail.
    """
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    supplied = request.headers.get(REQUEST_ID_HEADER)
    if supplied and _REQUEST_ID_PATTERN.match(supplied):
        request_id = supplied
    else:
        request_id = new_request_id()
    request.state.request_id = request_id
    return request_id


def is_versioned_request(request: Request) -> bool:
    return request.url.path.startswith(f"/{API_VERSION}")


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    # Bare routes return the payload as-is.
    if not is_versioned_request(request):
        return data
    meta = ResponseMeta(request_id=get_request_id(request))
    return {"data": data, "meta": meta.model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    meta = ResponseMeta(request_id=get_request_id(request))
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": meta.model_dump()}
