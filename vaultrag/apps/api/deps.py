from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.persistence.db import get_session
from vaultrag.services.storage import BlobStore, get_blob_store


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_store() -> BlobStore:
    # Overridable in tests via app.dependency_overrides.
    return get_blob_store()
