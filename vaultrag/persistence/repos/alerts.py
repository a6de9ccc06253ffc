from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.domain.models import AlertRecord, AlertRule


async def list_active_rules(session: AsyncSession, workspace_id: str) -> list[AlertRule]:
    result = await session.execute(
        select(AlertRule)
        .where(AlertRule.workspace_id == workspace_id, AlertRule.is_active.is_(True))
        .order_by(AlertRule.created_at, AlertRule.id)
    )
    return list(result.scalars().all())


async def list_workspaces_with_active_rules(session: AsyncSession) -> list[str]:
    result = await session.execute(
        select(AlertRule.workspace_id).where(AlertRule.is_active.is_(True)).distinct()
    )
    return sorted(result.scalars().all())


async def insert_record(
    session: AsyncSession,
    *,
    workspace_id: str,
    alert_type: str,
    severity: str,
    title: str,
    message: str,
    metadata: dict[str, Any] | None,
) -> AlertRecord:
    record = AlertRecord(
        id=uuid4().hex,
        workspace_id=workspace_id,
        alert_type=alert_type,
        severity=severity,
        title=title,
        message=message,
        metadata_json=metadata or {},
        status="active",
    )
    session.add(record)
    return record


async def find_active_record(
    session: AsyncSession, workspace_id: str, alert_type: str
) -> AlertRecord | None:
    result = await session.execute(
        select(AlertRecord)
        .where(
            AlertRecord.workspace_id == workspace_id,
            AlertRecord.alert_type == alert_type,
            AlertRecord.status == "active",
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_records(
    session: AsyncSession,
    *,
    workspace_id: str,
    status: str | None = None,
    limit: int = 50,
) -> list[AlertRecord]:
    stmt = select(AlertRecord).where(AlertRecord.workspace_id == workspace_id)
    if status:
        stmt = stmt.where(AlertRecord.status == status)
    result = await session.execute(
        stmt.order_by(AlertRecord.created_at.desc(), AlertRecord.id.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def resolve_record(
    session: AsyncSession, *, workspace_id: str, alert_id: str, resolved_at: datetime
) -> AlertRecord | None:
    # Workspace mismatch behaves like a missing record.
    record = await session.get(AlertRecord, alert_id)
    if record is None or record.workspace_id != workspace_id:
        return None
    record.status = "resolved"
    record.resolved_at = resolved_at
    return record
