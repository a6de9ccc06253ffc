from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.apps.api.deps import get_db
from vaultrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from vaultrag.apps.api.response import get_request_id, success_response
from vaultrag.services.access import require_member
from vaultrag.services.semantic_cache import SemanticCache, lookup_or_miss, store_quietly

router = APIRouter(tags=["cache"], responses=DEFAULT_ERROR_RESPONSES)


class CacheSearchRequest(BaseModel):
    workspace_id: str
    user_id: str
    query: str = Field(min_length=1)


class CacheStoreRequest(BaseModel):
    workspace_id: str
    user_id: str
    query: str = Field(min_length=1)
    response: str = Field(min_length=1)


@router.post("/cache/search")
async def search_cache(
    payload: CacheSearchRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    # A failing cache reads as a miss; callers fall through to the model.
    await require_member(db, workspace_id=payload.workspace_id, user_id=payload.user_id)
    hit = await lookup_or_miss(
        SemanticCache(),
        db,
        query=payload.query,
        workspace_id=payload.workspace_id,
        user_id=payload.user_id,
        request_id=get_request_id(request),
    )
    if hit is None:
        return success_response(request=request, data={"found": False})
    # Persist the cache_hit log entry written by the lookup.
    await db.commit()
    return success_response(
        request=request,
        data={
            "found": True,
            "response": hit.response_content,
            "similarity_score": hit.similarity_score,
            "tokens_saved": hit.tokens_saved,
            "cached_query": hit.query_text,
        },
    )


@router.post("/cache/store")
async def store_cache(
    payload: CacheStoreRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_member(db, workspace_id=payload.workspace_id, user_id=payload.user_id)
    entry = await store_quietly(
        SemanticCache(),
        db,
        query=payload.query,
        response=payload.response,
        workspace_id=payload.workspace_id,
    )
    if entry is None:
        return success_response(request=request, data={"stored": False})
    return success_response(
        request=request,
        data={"stored": True, "id": entry.id, "tokens_saved": entry.tokens_saved},
    )
