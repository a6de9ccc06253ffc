from __future__ import annotations

import os
import tempfile

# Point settings at a throwaway SQLite database before any vaultrag import builds the engine.
_TEST_DIR = tempfile.mkdtemp(prefix="vaultrag-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/vault.db"
os.environ["VAULT_STORAGE_DIR"] = os.path.join(_TEST_DIR, "blobs")
os.environ["LLM_PROVIDER"] = "fake"
os.environ["PARSE_EXECUTION_MODE"] = "inline"
os.environ["PARSE_BATCH_DELAY_S"] = "0"
os.environ["CHAT_SSE_POLL_INTERVAL_S"] = "0.01"

import pytest

from vaultrag.core.config import get_settings
from vaultrag.domain.models import Base
from vaultrag.persistence.db import engine
from vaultrag.services.interaction_limit import reset_interaction_limiter
from vaultrag.services.storage import LocalBlobStore, get_blob_store


@pytest.fixture(autouse=True)
async def database() -> None:
    # Fresh schema per test; the suite never depends on migration state.
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_cached_state() -> None:
    get_settings.cache_clear()
    get_blob_store.cache_clear()
    reset_interaction_limiter()
    yield
    get_settings.cache_clear()
    get_blob_store.cache_clear()
    reset_interaction_limiter()


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "vault")
