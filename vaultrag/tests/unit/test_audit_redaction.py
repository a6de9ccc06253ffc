from __future__ import annotations

from sqlalchemy import select

from vaultrag.domain.models import InteractionLog
from vaultrag.persistence.db import SessionLocal
from vaultrag.services.audit import ACTION_ERROR, record_interaction, sanitize_metadata
from vaultrag.tests.utils.vault import create_workspace


def test_interaction_metadata_redacts_credentials() -> None:
    payload = {
        "api_key": "sk-live",
        "Authorization": "Bearer abc",
        "nested": {"client_secret": "hidden", "items": [{"password": "pw"}]},
        "original_query": "What is yesterday's CVR?",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["Authorization"] == "[REDACTED]"
    assert sanitized["nested"]["client_secret"] == "[REDACTED]"
    assert sanitized["nested"]["items"][0]["password"] == "[REDACTED]"
    # Query text is kept for cache analytics.
    assert sanitized["original_query"] == "What is yesterday's CVR?"


async def test_record_interaction_commits_sanitized_entry() -> None:
    workspace_id = await create_workspace()
    async with SessionLocal() as session:
        await record_interaction(
            session=session,
            workspace_id=workspace_id,
            user_id="u1",
            action=ACTION_ERROR,
            request_id="req-1",
            metadata={"error_type": "UpstreamModelError", "api_key": "sk-live"},
            commit=True,
        )

    async with SessionLocal() as session:
        entry = (await session.execute(select(InteractionLog))).scalar_one()
    assert entry.action == ACTION_ERROR
    assert entry.request_id == "req-1"
    assert entry.created_at is not None
    assert entry.metadata_json == {"error_type": "UpstreamModelError", "api_key": "[REDACTED]"}


async def test_record_interaction_without_commit_leaves_transaction_to_caller() -> None:
    workspace_id = await create_workspace()
    async with SessionLocal() as session:
        await record_interaction(session=session, workspace_id=workspace_id, user_id="u1", action=ACTION_ERROR)
        await session.rollback()

    async with SessionLocal() as session:
        entries = (await session.execute(select(InteractionLog))).scalars().all()
    assert entries == []
