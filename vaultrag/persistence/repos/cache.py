from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.domain.models import SemanticCacheEntry


async def list_entries_since(
    session: AsyncSession, workspace_id: str, since: datetime
) -> list[SemanticCacheEntry]:
    # Workspace predicate is mandatory; entries never cross workspaces.
    result = await session.execute(
        select(SemanticCacheEntry)
        .where(
            SemanticCacheEntry.workspace_id == workspace_id,
            SemanticCacheEntry.created_at >= since,
        )
        .order_by(SemanticCacheEntry.created_at.desc(), SemanticCacheEntry.id.desc())
    )
    return list(result.scalars().all())


async def insert_entry(
    session: AsyncSession,
    *,
    workspace_id: str,
    query_hash: str,
    query_text: str,
    response_content: str,
    tokens_saved: int,
) -> SemanticCacheEntry:
    entry = SemanticCacheEntry(
        workspace_id=workspace_id,
        query_hash=query_hash,
        query_text=query_text,
        response_content=response_content,
        tokens_saved=tokens_saved,
    )
    session.add(entry)
    return entry


async def delete_entries_before(session: AsyncSession, cutoff: datetime) -> int:
    result = await session.execute(
        delete(SemanticCacheEntry).where(SemanticCacheEntry.created_at < cutoff)
    )
    return result.rowcount or 0
