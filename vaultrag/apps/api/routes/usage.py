from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.apps.api.deps import get_db
from vaultrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from vaultrag.apps.api.response import success_response
from vaultrag.services.access import require_member
from vaultrag.services.interaction_limit import get_interaction_limiter

router = APIRouter(tags=["usage"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/usage/daily")
async def daily_usage(
    request: Request,
    workspace_id: str = Query(...),
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_member(db, workspace_id=workspace_id, user_id=user_id)
    usage = await get_interaction_limiter().daily_usage(db, workspace_id=workspace_id, user_id=user_id)
    return success_response(request=request, data=asdict(usage))
