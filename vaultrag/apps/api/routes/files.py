from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.apps.api.deps import get_db, get_store
from vaultrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from vaultrag.apps.api.response import get_request_id, success_response
from vaultrag.services.access import require_member
from vaultrag.services.parsing import parse_vault_file
from vaultrag.services.queue import ReparseJobPayload, enqueue_reparse_job
from vaultrag.services.storage import BlobStore

router = APIRouter(tags=["files"], responses=DEFAULT_ERROR_RESPONSES)


class ParseFileRequest(BaseModel):
    file_id: str
    workspace_id: str
    user_id: str


class ReparseRequest(BaseModel):
    workspace_id: str
    user_id: str


@router.post("/files/parse")
async def parse_file(
    payload: ParseFileRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_store),
) -> dict:
    # Parse failures are a normal outcome and come back as success=false with 200.
    await require_member(db, workspace_id=payload.workspace_id, user_id=payload.user_id)
    outcome = await parse_vault_file(
        db,
        workspace_id=payload.workspace_id,
        file_id=payload.file_id,
        store=store,
        user_id=payload.user_id,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=outcome.as_response())


@router.post("/files/reparse")
async def reparse_files(
    payload: ReparseRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_member(db, workspace_id=payload.workspace_id, user_id=payload.user_id)
    # Release the request session before the batch opens its own sessions.
    await db.commit()
    job_id, report = await enqueue_reparse_job(
        ReparseJobPayload(workspace_id=payload.workspace_id, request_id=get_request_id(request))
    )
    data: dict = {"job_id": job_id, "status": "completed" if report is not None else "queued"}
    if report is not None:
        data["report"] = asdict(report)
    return success_response(request=request, data=data)
