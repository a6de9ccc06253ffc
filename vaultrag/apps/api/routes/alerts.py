from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.apps.api.deps import get_db
from vaultrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from vaultrag.apps.api.response import success_response
from vaultrag.domain.models import AlertRecord
from vaultrag.services.access import require_member
from vaultrag.services.alerts import (
    AlertEvaluator,
    AlertPayload,
    list_alerts,
    resolve_alert,
    trigger_alert,
)

router = APIRouter(tags=["alerts"], responses=DEFAULT_ERROR_RESPONSES)


class EvaluateRequest(BaseModel):
    workspace_id: str
    user_id: str


class TriggerRequest(BaseModel):
    workspace_id: str
    user_id: str
    alert_type: Literal["budget", "error_rate", "traffic_spike", "security"]
    severity: Literal["warning", "critical"] = "warning"
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _record_payload(record: AlertRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "workspace_id": record.workspace_id,
        "alert_type": record.alert_type,
        "severity": record.severity,
        "title": record.title,
        "message": record.message,
        "metadata": record.metadata_json or {},
        "status": record.status,
        "created_at": _isoformat(record.created_at),
        "resolved_at": _isoformat(record.resolved_at),
    }


@router.post("/alerts/evaluate")
async def evaluate_alerts(
    payload: EvaluateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_member(db, workspace_id=payload.workspace_id, user_id=payload.user_id)
    report = await AlertEvaluator().evaluate(db, payload.workspace_id)
    return success_response(request=request, data=asdict(report))


@router.post("/alerts/trigger")
async def manual_trigger(
    payload: TriggerRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_member(db, workspace_id=payload.workspace_id, user_id=payload.user_id)
    record = await trigger_alert(
        db,
        AlertPayload(
            workspace_id=payload.workspace_id,
            alert_type=payload.alert_type,
            severity=payload.severity,
            title=payload.title,
            message=payload.message,
            metadata=payload.metadata,
        ),
    )
    if record is None:
        return success_response(request=request, data={"triggered": False})
    return success_response(request=request, data={"triggered": True, "alert": _record_payload(record)})


@router.get("/alerts")
async def get_alerts(
    request: Request,
    workspace_id: str = Query(...),
    user_id: str = Query(...),
    status: Literal["active", "resolved"] | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_member(db, workspace_id=workspace_id, user_id=user_id)
    records = await list_alerts(db, workspace_id=workspace_id, status=status, limit=limit)
    return success_response(request=request, data={"items": [_record_payload(r) for r in records]})


@router.post("/alerts/{alert_id}/resolve")
async def resolve(
    alert_id: str,
    payload: EvaluateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_member(db, workspace_id=payload.workspace_id, user_id=payload.user_id)
    record = await resolve_alert(db, workspace_id=payload.workspace_id, alert_id=alert_id)
    if record is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Alert not found"})
    return success_response(request=request, data=_record_payload(record))
