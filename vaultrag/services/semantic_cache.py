from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import logging
import math
import re
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.core.config import get_settings
from vaultrag.core.errors import CacheError
from vaultrag.domain.models import SemanticCacheEntry
from vaultrag.persistence.repos import cache as cache_repo
from vaultrag.services.audit import ACTION_CACHE_HIT, record_interaction


logger = logging.getLogger(__name__)

# Words of two characters or fewer carry no signal for matching.
_MIN_WORD_LENGTH = 3
_WORD = re.compile(r"\w+")


@dataclass(frozen=True)
class CacheHit:
    entry_id: int
    query_text: str
    response_content: str
    tokens_saved: int
    similarity_score: float
    created_at: datetime


def _significant_words(text: str) -> set[str]:
    # Punctuation is not part of a word, so "yesterday's" and "yesterday?" both yield "yesterday".
    return {word for word in _WORD.findall(text.lower()) if len(word) >= _MIN_WORD_LENGTH}


def similarity(first: str, second: str) -> float:
    """Jaccard similarity of the significant lowercase word sets of two queries."""
    a = first.lower()
    b = second.lower()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    words_a = _significant_words(a)
    words_b = _significant_words(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def query_hash(query: str) -> str:
    # Informational key only; lookups match on similarity.
    return hashlib.sha256(query.lower().strip().encode("utf-8")).hexdigest()


def estimate_tokens_saved(query: str, response: str) -> int:
    return math.ceil((len(query) + len(response)) / 4)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SemanticCache:
    def __init__(
        self,
        *,
        threshold: float | None = None,
        ttl_hours: int | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self.threshold = threshold if threshold is not None else settings.cache_similarity_threshold
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.cache_ttl_hours)
        # Allow time injection for deterministic expiry tests.
        self._time_provider = time_provider or _utc_now

    async def lookup(
        self,
        session: AsyncSession,
        *,
        query: str,
        workspace_id: str,
        user_id: str | None = None,
        request_id: str | None = None,
    ) -> CacheHit | None:
        # Scan the workspace's live entries and keep the strictly best score.
        since = self._time_provider() - self.ttl
        try:
            entries = await cache_repo.list_entries_since(session, workspace_id, since)
        except SQLAlchemyError as exc:
            raise CacheError("Semantic cache search failed") from exc

        best: SemanticCacheEntry | None = None
        best_score = 0.0
        for entry in entries:
            score = similarity(query, entry.query_text)
            if score >= self.threshold and score > best_score:
                best = entry
                best_score = score
        if best is None:
            return None

        hit = CacheHit(
            entry_id=best.id,
            query_text=best.query_text,
            response_content=best.response_content,
            tokens_saved=best.tokens_saved,
            similarity_score=best_score,
            created_at=best.created_at,
        )
        logger.info(
            "cache_hit workspace_id=%s entry_id=%s score=%.2f",
            workspace_id,
            hit.entry_id,
            best_score,
        )
        await record_interaction(
            session=session,
            workspace_id=workspace_id,
            user_id=user_id,
            action=ACTION_CACHE_HIT,
            resource_type="semantic_cache",
            resource_id=str(hit.entry_id),
            request_id=request_id,
            metadata={
                "similarity_score": best_score,
                "tokens_saved": hit.tokens_saved,
                "original_query": query,
                "cached_query": hit.query_text,
            },
        )
        return hit

    async def store(
        self,
        session: AsyncSession,
        *,
        query: str,
        response: str,
        workspace_id: str,
    ) -> SemanticCacheEntry:
        # Always insert; duplicate entries from concurrent misses are harmless.
        tokens_saved = estimate_tokens_saved(query, response)
        try:
            entry = await cache_repo.insert_entry(
                session,
                workspace_id=workspace_id,
                query_hash=query_hash(query),
                query_text=query,
                response_content=response,
                tokens_saved=tokens_saved,
            )
            await session.flush()
        except SQLAlchemyError as exc:
            raise CacheError("Semantic cache store failed") from exc
        logger.info(
            "cache_store workspace_id=%s entry_id=%s tokens_saved=%s",
            workspace_id,
            entry.id,
            tokens_saved,
        )
        return entry


async def lookup_or_miss(
    cache: SemanticCache,
    session: AsyncSession,
    *,
    query: str,
    workspace_id: str,
    user_id: str | None = None,
    request_id: str | None = None,
) -> CacheHit | None:
    # Cache failures degrade to a miss so the model call still happens.
    try:
        return await cache.lookup(
            session,
            query=query,
            workspace_id=workspace_id,
            user_id=user_id,
            request_id=request_id,
        )
    except CacheError as exc:
        await session.rollback()
        logger.warning("cache_lookup_failed workspace_id=%s", workspace_id, exc_info=exc)
        return None


async def store_quietly(
    cache: SemanticCache,
    session: AsyncSession,
    *,
    query: str,
    response: str,
    workspace_id: str,
) -> SemanticCacheEntry | None:
    # Commit the entry on its own so a failed store never takes other writes with it.
    try:
        entry = await cache.store(session, query=query, response=response, workspace_id=workspace_id)
        await session.commit()
    except (CacheError, SQLAlchemyError) as exc:
        await session.rollback()
        logger.warning("cache_store_failed workspace_id=%s", workspace_id, exc_info=exc)
        return None
    return entry


async def prune_semantic_cache(
    session: AsyncSession,
    *,
    retention_days: int | None = None,
    now: datetime | None = None,
) -> int:
    # Physically delete entries older than the retention window; lookups already ignore them.
    days = retention_days if retention_days is not None else get_settings().cache_retention_days
    cutoff = (now or _utc_now()) - timedelta(days=days)
    deleted = await cache_repo.delete_entries_before(session, cutoff)
    await session.commit()
    logger.info("cache_pruned deleted=%s cutoff=%s", deleted, cutoff.isoformat())
    return deleted
