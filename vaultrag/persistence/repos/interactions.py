from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.domain.models import InteractionLog


async def count_actions(
    session: AsyncSession,
    *,
    workspace_id: str,
    action: str,
    start: datetime,
    end: datetime | None = None,
    user_id: str | None = None,
) -> int:
    # Half-open window [start, end) keeps adjacent windows from double counting.
    stmt = (
        select(func.count())
        .select_from(InteractionLog)
        .where(
            InteractionLog.workspace_id == workspace_id,
            InteractionLog.action == action,
            InteractionLog.created_at >= start,
        )
    )
    if end is not None:
        stmt = stmt.where(InteractionLog.created_at < end)
    if user_id is not None:
        stmt = stmt.where(InteractionLog.user_id == user_id)
    result = await session.execute(stmt)
    return int(result.scalar() or 0)


async def list_entries(
    session: AsyncSession,
    *,
    workspace_id: str,
    since: datetime,
    action: str | None = None,
) -> list[InteractionLog]:
    stmt = select(InteractionLog).where(
        InteractionLog.workspace_id == workspace_id,
        InteractionLog.created_at >= since,
    )
    if action is not None:
        stmt = stmt.where(InteractionLog.action == action)
    result = await session.execute(stmt.order_by(InteractionLog.created_at, InteractionLog.id))
    return list(result.scalars().all())
