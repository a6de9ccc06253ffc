from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.core.errors import AccessDeniedError
from vaultrag.persistence.repos import workspaces as workspaces_repo


logger = logging.getLogger(__name__)


async def require_member(session: AsyncSession, *, workspace_id: str, user_id: str) -> str:
    # Membership is a boolean gate; denial writes nothing.
    role = await workspaces_repo.get_member_role(session, workspace_id, user_id)
    if role is None:
        logger.warning("access_denied workspace_id=%s user_id=%s", workspace_id, user_id)
        raise AccessDeniedError("Access denied to workspace")
    return role
