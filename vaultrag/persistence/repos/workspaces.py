from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.domain.models import (
    AbTest,
    AnalyticsExport,
    KnowledgeBaseEntry,
    VaultConfig,
    Workspace,
    WorkspaceMember,
)


async def get_member_role(session: AsyncSession, workspace_id: str, user_id: str) -> str | None:
    result = await session.execute(
        select(WorkspaceMember.role).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_workspace(session: AsyncSession, workspace_id: str) -> Workspace | None:
    return await session.get(Workspace, workspace_id)


async def list_configs(session: AsyncSession, workspace_id: str) -> list[VaultConfig]:
    result = await session.execute(
        select(VaultConfig)
        .where(VaultConfig.workspace_id == workspace_id)
        .order_by(VaultConfig.config_section)
    )
    return list(result.scalars().all())


async def list_ab_tests(session: AsyncSession, workspace_id: str) -> list[AbTest]:
    result = await session.execute(
        select(AbTest).where(AbTest.workspace_id == workspace_id).order_by(AbTest.created_at.desc(), AbTest.id)
    )
    return list(result.scalars().all())


async def list_analytics_exports(session: AsyncSession, workspace_id: str) -> list[AnalyticsExport]:
    result = await session.execute(
        select(AnalyticsExport)
        .where(AnalyticsExport.workspace_id == workspace_id)
        .order_by(AnalyticsExport.created_at.desc(), AnalyticsExport.id)
    )
    return list(result.scalars().all())


async def list_knowledge_base(session: AsyncSession, workspace_id: str) -> list[KnowledgeBaseEntry]:
    result = await session.execute(
        select(KnowledgeBaseEntry)
        .where(KnowledgeBaseEntry.workspace_id == workspace_id)
        .order_by(KnowledgeBaseEntry.created_at.desc(), KnowledgeBaseEntry.id)
    )
    return list(result.scalars().all())
