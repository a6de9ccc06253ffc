from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from vaultrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from vaultrag.apps.api.response import SuccessEnvelope, success_response

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str


# Allow unwrapped responses on the bare path while /v1 gets the envelope.
@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request) -> dict:
    payload = HealthResponse(status="ok")
    return success_response(request=request, data=payload)
