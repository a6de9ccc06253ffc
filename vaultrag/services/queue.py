from __future__ import annotations

import asyncio
from dataclasses import asdict
import logging
from typing import Any

from arq import create_pool
from arq.connections import RedisSettings
from pydantic import BaseModel

from vaultrag.core.config import get_settings
from vaultrag.services.parsing import ReparseReport, reparse_unprocessed


logger = logging.getLogger(__name__)

_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()

REPARSE_JOB_NAME = "reparse_workspace"


class ReparseJobPayload(BaseModel):
    # Published job schema for API-to-worker handoff.
    workspace_id: str
    request_id: str


def is_inline_mode() -> bool:
    return get_settings().parse_execution_mode.lower() == "inline"


async def get_redis_pool():
    # Cache the Redis pool to avoid reconnecting on every enqueue.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        # Drop loop-bound pools to avoid cross-loop errors in tests.
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.parse_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


async def process_reparse_job(payload: ReparseJobPayload) -> dict[str, Any]:
    # Shared by the worker and inline mode so both behave the same.
    report = await reparse_unprocessed(payload.workspace_id)
    logger.info(
        "reparse_job_done workspace_id=%s request_id=%s processed=%s success=%s errors=%s",
        payload.workspace_id,
        payload.request_id,
        report.processed_count,
        report.success_count,
        report.error_count,
    )
    return asdict(report)


async def enqueue_reparse_job(payload: ReparseJobPayload) -> tuple[str, ReparseReport | None]:
    """Queue a bulk re-parse for a workspace.

    Inline mode runs the job before returning and hands back its report; queue mode
    returns only the job id.
    """
    job_id = f"reparse:{payload.workspace_id}:{payload.request_id}"
    settings = get_settings()
    if is_inline_mode():
        report = await reparse_unprocessed(payload.workspace_id)
        return job_id, report

    redis = await get_redis_pool()
    job = await redis.enqueue_job(
        REPARSE_JOB_NAME,
        payload.model_dump(),
        _job_id=job_id,
        _queue_name=settings.parse_queue_name,
    )
    # When a job id already exists, arq returns None; keep tracing with the same id.
    return (job.job_id if job else job_id), None
