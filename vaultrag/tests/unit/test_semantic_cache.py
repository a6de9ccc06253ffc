from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from vaultrag.domain.models import InteractionLog, SemanticCacheEntry
from vaultrag.persistence.db import SessionLocal
from vaultrag.services.audit import ACTION_CACHE_HIT
from vaultrag.services.semantic_cache import SemanticCache, prune_semantic_cache
from vaultrag.tests.utils.vault import add_cache_entry, create_workspace


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _cache() -> SemanticCache:
    return SemanticCache(threshold=0.6, ttl_hours=24, time_provider=lambda: NOW)


async def test_lookup_returns_best_qualifying_entry_and_logs_hit() -> None:
    workspace_id = await create_workspace()
    await add_cache_entry(
        workspace_id=workspace_id,
        query="What's the CVR for yesterday?",
        response="paraphrase answer",
        created_at=NOW - timedelta(hours=2),
    )
    await add_cache_entry(
        workspace_id=workspace_id,
        query="What is yesterday's CVR?",
        response="exact answer",
        created_at=NOW - timedelta(hours=3),
    )
    async with SessionLocal() as session:
        hit = await _cache().lookup(session, query="What is yesterday's CVR?", workspace_id=workspace_id, user_id="u1")
        await session.commit()

    assert hit is not None
    assert hit.response_content == "exact answer"
    assert hit.similarity_score == 1.0

    async with SessionLocal() as session:
        logged = (
            await session.execute(select(InteractionLog).where(InteractionLog.action == ACTION_CACHE_HIT))
        ).scalars().all()
    assert len(logged) == 1
    assert logged[0].metadata_json["cached_query"] == "What is yesterday's CVR?"
    assert logged[0].metadata_json["similarity_score"] == 1.0


async def test_lookup_ignores_expired_entries() -> None:
    workspace_id = await create_workspace()
    await add_cache_entry(
        workspace_id=workspace_id,
        query="What is yesterday's CVR?",
        response="stale",
        created_at=NOW - timedelta(hours=25),
    )
    async with SessionLocal() as session:
        assert await _cache().lookup(session, query="What is yesterday's CVR?", workspace_id=workspace_id) is None


async def test_lookup_below_threshold_is_a_miss() -> None:
    workspace_id = await create_workspace()
    await add_cache_entry(
        workspace_id=workspace_id,
        query="Show revenue by channel",
        response="revenue",
        created_at=NOW - timedelta(minutes=5),
    )
    async with SessionLocal() as session:
        assert await _cache().lookup(session, query="What is yesterday's CVR?", workspace_id=workspace_id) is None


async def test_entries_never_cross_workspaces() -> None:
    workspace_a = await create_workspace()
    workspace_b = await create_workspace()
    await add_cache_entry(
        workspace_id=workspace_a,
        query="What is yesterday's CVR?",
        response="A only",
        created_at=NOW - timedelta(minutes=5),
    )
    async with SessionLocal() as session:
        assert await _cache().lookup(session, query="What is yesterday's CVR?", workspace_id=workspace_b) is None
        assert await _cache().lookup(session, query="What is yesterday's CVR?", workspace_id=workspace_a) is not None


async def test_store_inserts_entry_with_token_estimate() -> None:
    workspace_id = await create_workspace()
    async with SessionLocal() as session:
        entry = await _cache().store(session, query="abcd", response="efgh1", workspace_id=workspace_id)
        await session.commit()
    assert entry.tokens_saved == 3

    async with SessionLocal() as session:
        count = await session.scalar(select(func.count()).select_from(SemanticCacheEntry))
    assert count == 1


async def test_prune_deletes_only_entries_past_retention() -> None:
    workspace_id = await create_workspace()
    await add_cache_entry(workspace_id=workspace_id, query="old", response="x", created_at=NOW - timedelta(days=31))
    await add_cache_entry(workspace_id=workspace_id, query="recent", response="y", created_at=NOW - timedelta(days=2))
    async with SessionLocal() as session:
        deleted = await prune_semantic_cache(session, retention_days=30, now=NOW)
    assert deleted == 1

    async with SessionLocal() as session:
        remaining = (await session.execute(select(SemanticCacheEntry.query_text))).scalars().all()
    assert remaining == ["recent"]
