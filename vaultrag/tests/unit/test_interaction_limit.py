from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from vaultrag.core.errors import RateLimitExceededError
from vaultrag.persistence.db import SessionLocal
from vaultrag.services.audit import ACTION_AI_INTERACTION, ACTION_CACHE_HIT
from vaultrag.services.interaction_limit import InteractionLimiter, day_window
from vaultrag.tests.utils.vault import add_interactions, create_workspace


NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)


def test_day_window_is_utc_day() -> None:
    start, end = day_window(NOW)
    assert start == datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 10, 23, 59, 59, tzinfo=timezone.utc)


@pytest.mark.parametrize(("prior", "allowed"), [(49, True), (50, False)])
async def test_limit_boundary(prior: int, allowed: bool) -> None:
    workspace_id = await create_workspace()
    await add_interactions(
        workspace_id=workspace_id,
        user_id="u1",
        action=ACTION_AI_INTERACTION,
        count=prior,
        created_at=NOW - timedelta(hours=1),
    )
    limiter = InteractionLimiter(limit=50, time_provider=lambda: NOW)
    async with SessionLocal() as session:
        decision = await limiter.check(session, workspace_id=workspace_id, user_id="u1")
    assert decision.allowed is allowed
    assert decision.count == prior
    assert decision.limit == 50


async def test_only_todays_ai_interactions_for_the_user_count() -> None:
    workspace_id = await create_workspace(members=("u1", "u2"))
    # Yesterday, other actions and other users are all outside the count.
    await add_interactions(
        workspace_id=workspace_id,
        user_id="u1",
        action=ACTION_AI_INTERACTION,
        count=5,
        created_at=NOW - timedelta(days=1),
    )
    await add_interactions(
        workspace_id=workspace_id, user_id="u1", action=ACTION_CACHE_HIT, count=3, created_at=NOW
    )
    await add_interactions(
        workspace_id=workspace_id, user_id="u2", action=ACTION_AI_INTERACTION, count=4, created_at=NOW
    )
    await add_interactions(
        workspace_id=workspace_id, user_id="u1", action=ACTION_AI_INTERACTION, count=2, created_at=NOW
    )
    limiter = InteractionLimiter(limit=50, time_provider=lambda: NOW)
    async with SessionLocal() as session:
        assert await limiter.count_today(session, workspace_id=workspace_id, user_id="u1") == 2


async def test_enforce_raises_with_counts() -> None:
    workspace_id = await create_workspace()
    await add_interactions(
        workspace_id=workspace_id, user_id="u1", action=ACTION_AI_INTERACTION, count=3, created_at=NOW
    )
    limiter = InteractionLimiter(limit=3, time_provider=lambda: NOW)
    async with SessionLocal() as session:
        with pytest.raises(RateLimitExceededError) as excinfo:
            await limiter.enforce(session, workspace_id=workspace_id, user_id="u1")
    assert excinfo.value.count == 3
    assert excinfo.value.limit == 3


async def test_unlimited_users_are_always_allowed() -> None:
    workspace_id = await create_workspace()
    await add_interactions(
        workspace_id=workspace_id, user_id="u1", action=ACTION_AI_INTERACTION, count=3, created_at=NOW
    )
    limiter = InteractionLimiter(limit=1, time_provider=lambda: NOW)
    async with SessionLocal() as session:
        decision = await limiter.enforce(session, workspace_id=workspace_id, user_id="u1", unlimited=True)
    assert decision.allowed is True
    assert decision.unlimited is True


async def test_daily_usage_reports_remaining() -> None:
    workspace_id = await create_workspace()
    await add_interactions(
        workspace_id=workspace_id, user_id="u1", action=ACTION_AI_INTERACTION, count=7, created_at=NOW
    )
    limiter = InteractionLimiter(limit=50, time_provider=lambda: NOW)
    async with SessionLocal() as session:
        usage = await limiter.daily_usage(session, workspace_id=workspace_id, user_id="u1")
    assert usage.daily_count == 7
    assert usage.remaining == 43
    assert usage.can_make_request is True
    assert usage.reset_time == "2026-03-10T23:59:59Z"
