from __future__ import annotations

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.domain.models import VaultFile


async def get_file(session: AsyncSession, workspace_id: str, file_id: str) -> VaultFile | None:
    # Return None for workspace mismatch to keep 404 semantics.
    result = await session.execute(
        select(VaultFile).where(VaultFile.id == file_id, VaultFile.workspace_id == workspace_id)
    )
    return result.scalar_one_or_none()


async def list_recent_files(
    session: AsyncSession, workspace_id: str, *, limit: int | None = None
) -> list[VaultFile]:
    # Newest first; the id tiebreak keeps ordering stable for equal timestamps.
    stmt = (
        select(VaultFile)
        .where(VaultFile.workspace_id == workspace_id)
        .order_by(VaultFile.created_at.desc(), VaultFile.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_project_files(
    session: AsyncSession, workspace_id: str, project_id: str
) -> list[VaultFile]:
    # Project scope includes the project's own files plus workspace-level (unscoped) files.
    result = await session.execute(
        select(VaultFile)
        .where(
            VaultFile.workspace_id == workspace_id,
            or_(VaultFile.project_id == project_id, VaultFile.project_id.is_(None)),
        )
        .order_by(VaultFile.config_section, VaultFile.created_at.desc(), VaultFile.id)
    )
    return list(result.scalars().all())


async def list_unprocessed_files(session: AsyncSession, workspace_id: str) -> list[VaultFile]:
    result = await session.execute(
        select(VaultFile)
        .where(VaultFile.workspace_id == workspace_id, VaultFile.is_processed.is_(False))
        .order_by(VaultFile.created_at, VaultFile.id)
    )
    return list(result.scalars().all())


async def mark_processed(session: AsyncSession, file_id: str) -> None:
    await session.execute(update(VaultFile).where(VaultFile.id == file_id).values(is_processed=True))
