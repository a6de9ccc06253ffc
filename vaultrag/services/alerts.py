from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Awaitable, Callable, Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.core.config import get_settings
from vaultrag.core.errors import AlertEvaluationError, DatabaseError
from vaultrag.domain.models import AlertRecord, AlertRule, InteractionLog
from vaultrag.persistence.repos import alerts as alerts_repo
from vaultrag.persistence.repos import interactions as interactions_repo
from vaultrag.services.audit import ACTION_AI_INTERACTION, ACTION_ERROR
from vaultrag.services.interaction_limit import day_window


logger = logging.getLogger(__name__)

AlertType = Literal["budget", "error_rate", "traffic_spike", "security"]
Severity = Literal["warning", "critical"]

_HOUR = timedelta(hours=1)
_TRAFFIC_HISTORY = timedelta(days=7)
_TRAFFIC_HISTORY_HOURS = 7 * 24
# Keep security alert metadata bounded.
_SECURITY_SAMPLE = 20


@dataclass(frozen=True)
class AlertPayload:
    workspace_id: str
    alert_type: str
    severity: str
    title: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RuleSnapshot:
    """Plain copy of an alert rule that survives session rollbacks."""

    id: str
    workspace_id: str
    alert_type: str
    threshold_value: float

    @classmethod
    def from_model(cls, rule: AlertRule) -> RuleSnapshot:
        return cls(
            id=rule.id,
            workspace_id=rule.workspace_id,
            alert_type=rule.alert_type,
            threshold_value=float(rule.threshold_value),
        )


@dataclass
class EvaluationReport:
    workspace_id: str
    rules_evaluated: int = 0
    alerts_raised: list[str] = field(default_factory=list)
    alerts_suppressed: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_float(value: Any) -> float:
    # Metadata is free-form; anything non-numeric counts as zero.
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _metadata(entry: InteractionLog) -> dict[str, Any]:
    return entry.metadata_json if isinstance(entry.metadata_json, dict) else {}


def _is_error_entry(entry: InteractionLog) -> bool:
    return entry.action == ACTION_ERROR or bool(_metadata(entry).get("error_type"))


def _is_security_entry(entry: InteractionLog) -> bool:
    # Authorization, permission and row-level-security failures.
    metadata = _metadata(entry)
    if metadata.get("error_type") == "Unauthorized":
        return True
    message = metadata.get("error_message")
    if not isinstance(message, str):
        return False
    return "permission" in message or "RLS" in message


def _fmt(value: float) -> str:
    return f"{value:g}"


async def trigger_alert(
    session: AsyncSession,
    payload: AlertPayload,
    *,
    dedupe_active: bool | None = None,
) -> AlertRecord | None:
    """Insert an active alert record; returns None when de-duplication suppresses it."""
    dedupe = dedupe_active if dedupe_active is not None else get_settings().alert_dedupe_active
    try:
        if dedupe:
            existing = await alerts_repo.find_active_record(session, payload.workspace_id, payload.alert_type)
            if existing is not None:
                logger.info(
                    "alert_suppressed workspace_id=%s alert_type=%s active_id=%s",
                    payload.workspace_id,
                    payload.alert_type,
                    existing.id,
                )
                return None
        record = await alerts_repo.insert_record(
            session,
            workspace_id=payload.workspace_id,
            alert_type=payload.alert_type,
            severity=payload.severity,
            title=payload.title,
            message=payload.message,
            metadata=payload.metadata,
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise DatabaseError("Failed to store alert record") from exc
    # Delivery to notification channels is handled outside the core.
    logger.warning(
        "alert_triggered workspace_id=%s alert_type=%s severity=%s title=%s",
        payload.workspace_id,
        payload.alert_type,
        payload.severity,
        payload.title,
    )
    return record


_RuleCheck = Callable[[AsyncSession, RuleSnapshot, datetime], Awaitable[AlertPayload | None]]


class AlertEvaluator:
    def __init__(
        self,
        *,
        time_provider: Callable[[], datetime] | None = None,
        dedupe_active: bool | None = None,
    ) -> None:
        # Allow time injection for deterministic window tests.
        self._time_provider = time_provider or _utc_now
        self._dedupe_active = dedupe_active
        self._checks: dict[str, _RuleCheck] = {
            "budget": self.check_budget,
            "error_rate": self.check_error_rate,
            "traffic_spike": self.check_traffic_spike,
            "security": self.check_security,
        }

    async def evaluate(self, session: AsyncSession, workspace_id: str) -> EvaluationReport:
        """Evaluate every active rule of a workspace; one failing rule never blocks the rest."""
        now = self._time_provider()
        report = EvaluationReport(workspace_id=workspace_id)
        rules = await alerts_repo.list_active_rules(session, workspace_id)
        # A rollback after a failed rule expires ORM state, so work from snapshots.
        snapshots = [RuleSnapshot.from_model(rule) for rule in rules]
        for rule in snapshots:
            report.rules_evaluated += 1
            try:
                check = self._checks.get(rule.alert_type)
                if check is None:
                    raise AlertEvaluationError(f"Unknown alert type: {rule.alert_type}")
                payload = await check(session, rule, now)
                if payload is None:
                    continue
                record = await trigger_alert(session, payload, dedupe_active=self._dedupe_active)
            except Exception as exc:  # noqa: BLE001 - isolate failures per rule
                await session.rollback()
                logger.warning(
                    "alert_rule_failed workspace_id=%s rule_id=%s alert_type=%s",
                    workspace_id,
                    rule.id,
                    rule.alert_type,
                    exc_info=exc,
                )
                report.failures.append(f"{rule.id}: {exc}")
                continue
            if record is None:
                report.alerts_suppressed.append(rule.alert_type)
            else:
                report.alerts_raised.append(rule.alert_type)
        return report

    async def check_budget(
        self, session: AsyncSession, rule: RuleSnapshot, now: datetime
    ) -> AlertPayload | None:
        # Sum today's cost estimates across AI interactions.
        start, _ = day_window(now)
        entries = await interactions_repo.list_entries(
            session,
            workspace_id=rule.workspace_id,
            since=start,
            action=ACTION_AI_INTERACTION,
        )
        total = sum(_as_float(_metadata(entry).get("cost_estimate")) for entry in entries)
        threshold = rule.threshold_value
        if total <= threshold:
            return None
        return AlertPayload(
            workspace_id=rule.workspace_id,
            alert_type="budget",
            severity="critical" if total > threshold * 1.5 else "warning",
            title="Daily budget exceeded",
            message=f"Current cost: ${total:.2f} (limit: ${_fmt(threshold)})",
            metadata={"current_cost": total, "threshold": threshold},
        )

    async def check_error_rate(
        self, session: AsyncSession, rule: RuleSnapshot, now: datetime
    ) -> AlertPayload | None:
        entries = await interactions_repo.list_entries(
            session, workspace_id=rule.workspace_id, since=now - _HOUR
        )
        total = len(entries)
        errors = sum(1 for entry in entries if _is_error_entry(entry))
        rate = (errors / total) * 100 if total > 0 else 0.0
        threshold = rule.threshold_value
        if rate <= threshold:
            return None
        return AlertPayload(
            workspace_id=rule.workspace_id,
            alert_type="error_rate",
            severity="critical" if rate > threshold * 2 else "warning",
            title="High error rate",
            message=f"{rate:.1f}% errors in the last hour ({errors}/{total} requests)",
            metadata={"error_rate": rate, "errors": errors, "total": total},
        )

    async def check_traffic_spike(
        self, session: AsyncSession, rule: RuleSnapshot, now: datetime
    ) -> AlertPayload | None:
        # Naive hourly baseline: the last 7 days of AI interactions spread over 168 hours.
        current = await interactions_repo.count_actions(
            session,
            workspace_id=rule.workspace_id,
            action=ACTION_AI_INTERACTION,
            start=now - _HOUR,
        )
        history = await interactions_repo.count_actions(
            session,
            workspace_id=rule.workspace_id,
            action=ACTION_AI_INTERACTION,
            start=now - _TRAFFIC_HISTORY,
        )
        average = history / _TRAFFIC_HISTORY_HOURS
        ratio = current / average if average > 0 else 1.0
        threshold = rule.threshold_value
        if ratio <= threshold:
            return None
        return AlertPayload(
            workspace_id=rule.workspace_id,
            alert_type="traffic_spike",
            severity="critical" if ratio > threshold * 2 else "warning",
            title="Traffic spike detected",
            message=f"{current} requests/hour vs average {average:.1f} (+{(ratio - 1) * 100:.0f}%)",
            metadata={"current": current, "average": average, "spike_ratio": ratio},
        )

    async def check_security(
        self, session: AsyncSession, rule: RuleSnapshot, now: datetime
    ) -> AlertPayload | None:
        entries = await interactions_repo.list_entries(
            session, workspace_id=rule.workspace_id, since=now - _HOUR
        )
        suspicious = [entry for entry in entries if _is_security_entry(entry)]
        if len(suspicious) <= rule.threshold_value:
            return None
        return AlertPayload(
            workspace_id=rule.workspace_id,
            alert_type="security",
            severity="critical",
            title="Suspicious activity detected",
            message=f"{len(suspicious)} unauthorized access attempts in the last hour",
            metadata={
                "suspicious_count": len(suspicious),
                "entry_ids": [entry.id for entry in suspicious[:_SECURITY_SAMPLE]],
            },
        )


async def evaluate_all_workspaces(
    session: AsyncSession, *, evaluator: AlertEvaluator | None = None
) -> list[EvaluationReport]:
    # Periodic sweep over every workspace that has at least one active rule.
    active = evaluator or AlertEvaluator()
    reports: list[EvaluationReport] = []
    for workspace_id in await alerts_repo.list_workspaces_with_active_rules(session):
        reports.append(await active.evaluate(session, workspace_id))
    return reports


async def list_alerts(
    session: AsyncSession, *, workspace_id: str, status: str | None = None, limit: int = 50
) -> list[AlertRecord]:
    return await alerts_repo.list_records(session, workspace_id=workspace_id, status=status, limit=limit)


async def resolve_alert(
    session: AsyncSession, *, workspace_id: str, alert_id: str, now: datetime | None = None
) -> AlertRecord | None:
    record = await alerts_repo.resolve_record(
        session,
        workspace_id=workspace_id,
        alert_id=alert_id,
        resolved_at=now or _utc_now(),
    )
    if record is None:
        return None
    await session.commit()
    logger.info("alert_resolved workspace_id=%s alert_id=%s", workspace_id, alert_id)
    return record
