from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.domain.models import InteractionLog


logger = logging.getLogger(__name__)

# Interaction action kinds read back by the limiter and the alert evaluator.
ACTION_AI_INTERACTION = "ai_interaction"
ACTION_ERROR = "error"
ACTION_CACHE_HIT = "cache_hit"
ACTION_FILE_PARSED = "file_parsed"

# Query and response text are kept; only credential-like keys are scrubbed.
_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "secret", "password", "access_token"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


async def record_interaction(
    *,
    session: AsyncSession,
    workspace_id: str,
    user_id: str | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    commit: bool = False,
) -> None:
    # Append to the interaction log without letting audit failures break user flows.
    entry = InteractionLog(
        workspace_id=workspace_id,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=request_id,
        metadata_json=sanitize_metadata(metadata or {}),
        created_at=datetime.now(timezone.utc),
    )
    session.add(entry)
    if not commit:
        return
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning(
            "interaction_write_failed action=%s workspace_id=%s request_id=%s",
            action,
            workspace_id,
            request_id,
            exc_info=exc,
        )
