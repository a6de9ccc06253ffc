from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.core.config import get_settings
from vaultrag.core.errors import RateLimitExceededError
from vaultrag.persistence.repos import interactions as interactions_repo
from vaultrag.services.audit import ACTION_AI_INTERACTION


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionDecision:
    # Outcome of a daily quota check; the count is read, not reserved.
    allowed: bool
    count: int
    limit: int
    unlimited: bool = False


@dataclass(frozen=True)
class DailyUsage:
    daily_count: int
    limit: int
    remaining: int
    can_make_request: bool
    reset_time: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def day_window(now: datetime) -> tuple[datetime, datetime]:
    # [today 00:00:00Z, today 23:59:59Z) in UTC.
    current = now.astimezone(timezone.utc)
    start = datetime(current.year, current.month, current.day, tzinfo=timezone.utc)
    return start, start + timedelta(hours=23, minutes=59, seconds=59)


def unlimited_user_ids() -> frozenset[str]:
    raw = get_settings().interaction_unlimited_user_ids
    return frozenset(item.strip() for item in raw.split(",") if item.strip())


class InteractionLimiter:
    def __init__(
        self,
        *,
        limit: int | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        # Allow time injection for deterministic day-rollover tests.
        self._limit = limit
        self._time_provider = time_provider or _utc_now

    @property
    def limit(self) -> int:
        return self._limit if self._limit is not None else get_settings().interaction_daily_limit

    async def count_today(self, session: AsyncSession, *, workspace_id: str, user_id: str) -> int:
        start, end = day_window(self._time_provider())
        return await interactions_repo.count_actions(
            session,
            workspace_id=workspace_id,
            action=ACTION_AI_INTERACTION,
            start=start,
            end=end,
            user_id=user_id,
        )

    async def check(
        self,
        session: AsyncSession,
        *,
        workspace_id: str,
        user_id: str,
        unlimited: bool = False,
    ) -> InteractionDecision:
        """Count today's AI interactions for the user and compare with the daily limit.

        Nothing is consumed here: the caller logs an ``ai_interaction`` entry after a
        successful answer, so concurrent requests may overshoot the limit slightly.
        """
        limit = self.limit
        count = await self.count_today(session, workspace_id=workspace_id, user_id=user_id)
        if unlimited:
            return InteractionDecision(allowed=True, count=count, limit=limit, unlimited=True)
        return InteractionDecision(allowed=count < limit, count=count, limit=limit)

    async def enforce(
        self,
        session: AsyncSession,
        *,
        workspace_id: str,
        user_id: str,
        unlimited: bool = False,
    ) -> InteractionDecision:
        # Raise before any model work happens when the quota is exhausted.
        decision = await self.check(
            session, workspace_id=workspace_id, user_id=user_id, unlimited=unlimited
        )
        if not decision.allowed:
            logger.info(
                "interaction_limit_reached workspace_id=%s user_id=%s count=%s limit=%s",
                workspace_id,
                user_id,
                decision.count,
                decision.limit,
            )
            raise RateLimitExceededError(decision.count, decision.limit)
        return decision

    async def daily_usage(
        self, session: AsyncSession, *, workspace_id: str, user_id: str
    ) -> DailyUsage:
        now = self._time_provider()
        limit = self.limit
        count = await self.count_today(session, workspace_id=workspace_id, user_id=user_id)
        start, _ = day_window(now)
        return DailyUsage(
            daily_count=count,
            limit=limit,
            remaining=max(0, limit - count),
            can_make_request=count < limit,
            reset_time=f"{start.date().isoformat()}T23:59:59Z",
        )


_limiter: InteractionLimiter | None = None


def get_interaction_limiter() -> InteractionLimiter:
    # Cache the limiter for reuse across requests.
    global _limiter
    if _limiter is None:
        _limiter = InteractionLimiter()
    return _limiter


def reset_interaction_limiter(limiter: InteractionLimiter | None = None) -> None:
    # Swap or clear the cached limiter for deterministic tests.
    global _limiter
    _limiter = limiter
