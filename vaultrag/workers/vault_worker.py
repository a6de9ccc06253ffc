from __future__ import annotations

import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from vaultrag.core.config import get_settings
from vaultrag.core.logging import configure_logging
from vaultrag.persistence.db import SessionLocal
from vaultrag.services.alerts import evaluate_all_workspaces
from vaultrag.services.queue import ReparseJobPayload, process_reparse_job
from vaultrag.services.semantic_cache import prune_semantic_cache


logger = logging.getLogger(__name__)


async def reparse_workspace(ctx, payload: dict) -> dict[str, Any]:
    # Parse and validate payloads in the worker to enforce schema contracts.
    job_payload = ReparseJobPayload.model_validate(payload)
    return await process_reparse_job(job_payload)


async def evaluate_alerts(ctx) -> int:
    async with SessionLocal() as session:
        reports = await evaluate_all_workspaces(session)
    raised = sum(len(report.alerts_raised) for report in reports)
    logger.info("alert_sweep_done workspaces=%s raised=%s", len(reports), raised)
    return raised


async def prune_cache(ctx) -> int:
    async with SessionLocal() as session:
        return await prune_semantic_cache(session)


def _minutes(raw: str) -> set[int]:
    return {int(item) for item in raw.split(",") if item.strip()}


async def _startup(ctx) -> None:
    configure_logging()


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.parse_queue_name
    functions = [reparse_workspace]
    cron_jobs = [
        cron(evaluate_alerts, minute=_minutes(settings.alert_eval_minutes)),
        # Daily cache reaper at 03:00 UTC.
        cron(prune_cache, hour={3}, minute={0}),
    ]
    on_startup = _startup
