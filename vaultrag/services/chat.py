from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.agent.graph import run_graph
from vaultrag.domain.state import ChatState
from vaultrag.services.access import require_member
from vaultrag.services.audit import ACTION_AI_INTERACTION, ACTION_ERROR, record_interaction
from vaultrag.services.costs import estimate_usage
from vaultrag.services.interaction_limit import (
    InteractionDecision,
    InteractionLimiter,
    get_interaction_limiter,
    unlimited_user_ids,
)
from vaultrag.services.semantic_cache import SemanticCache
from vaultrag.services.storage import BlobStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatRequest:
    workspace_id: str
    user_id: str
    message: str
    project_id: str | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class ChatResult:
    request_id: str
    content: str
    cached: bool
    similarity_score: float | None
    files_analyzed: int
    mode: str
    tokens_used: int
    cost_estimate: float
    latency_ms: int

    def as_response(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "request_id": self.request_id,
            "cached": self.cached,
            "similarity_score": self.similarity_score,
            "files_analyzed": self.files_analyzed,
        }


def new_request_id() -> str:
    return uuid4().hex[:8]


async def authorize_chat(
    session: AsyncSession,
    request: ChatRequest,
    *,
    limiter: InteractionLimiter | None = None,
) -> InteractionDecision:
    # Membership first, then the daily quota; both abort before any model work.
    await require_member(session, workspace_id=request.workspace_id, user_id=request.user_id)
    active_limiter = limiter or get_interaction_limiter()
    return await active_limiter.enforce(
        session,
        workspace_id=request.workspace_id,
        user_id=request.user_id,
        unlimited=request.user_id in unlimited_user_ids(),
    )


async def run_chat(
    session: AsyncSession,
    request: ChatRequest,
    *,
    llm,
    token_callback: Callable[[str], None] | None = None,
    cache: SemanticCache | None = None,
    store: BlobStore | None = None,
    should_store: Callable[[], bool] | None = None,
) -> ChatResult:
    """Run the cache -> context -> model -> cache pipeline and log the interaction.

    Callers must have passed ``authorize_chat`` first. Model failures are logged as
    ``error`` interactions and re-raised; nothing is cached for them.
    """
    request_id = request.request_id or new_request_id()
    started = time.monotonic()
    state: ChatState = {
        "request_id": request_id,
        "workspace_id": request.workspace_id,
        "project_id": request.project_id,
        "user_id": request.user_id,
        "user_message": request.message,
        "mode": "project" if request.project_id else "global",
        "context": None,
        "files_analyzed": 0,
        "answer": None,
        "cached": False,
        "similarity_score": None,
        "tokens_saved": 0,
        "timings_ms": {},
    }
    try:
        final_state = await run_graph(
            llm=llm,
            session=session,
            state=state,
            cache=cache or SemanticCache(),
            token_callback=token_callback or (lambda _delta: None),
            store=store,
            should_store=should_store,
        )
    except asyncio.CancelledError:
        # Allow cancellation to propagate so disconnects stop work quickly.
        raise
    except Exception as exc:
        await session.rollback()
        await record_interaction(
            session=session,
            workspace_id=request.workspace_id,
            user_id=request.user_id,
            action=ACTION_ERROR,
            resource_type="vault_chat",
            resource_id=request.project_id,
            request_id=request_id,
            metadata={
                "error_type": type(exc).__name__,
                "error_message": str(exc),
                "mode": state["mode"],
            },
            commit=True,
        )
        logger.warning(
            "chat_failed request_id=%s workspace_id=%s error_type=%s",
            request_id,
            request.workspace_id,
            type(exc).__name__,
        )
        raise

    answer = final_state.get("answer") or ""
    cached = bool(final_state.get("cached"))
    latency_ms = int((time.monotonic() - started) * 1000)
    if cached:
        tokens_used, cost = 0, 0.0
    else:
        usage = estimate_usage(prompt_text=final_state.get("prompt_text") or "", answer_text=answer)
        tokens_used, cost = usage.tokens_used, usage.cost_usd
    mode = final_state.get("mode") or state["mode"]

    # This entry is what the daily limiter counts.
    await record_interaction(
        session=session,
        workspace_id=request.workspace_id,
        user_id=request.user_id,
        action=ACTION_AI_INTERACTION,
        resource_type="vault_chat",
        resource_id=request.project_id,
        request_id=request_id,
        metadata={
            "tokens_used": tokens_used,
            "latency_ms": latency_ms,
            "cost_estimate": cost,
            "cache_hit": cached,
            "tokens_saved": final_state.get("tokens_saved") or 0,
            "similarity_score": final_state.get("similarity_score"),
            "files_analyzed": final_state.get("files_analyzed") or 0,
            "message_length": len(request.message),
            "mode": mode,
        },
        commit=True,
    )
    logger.info(
        "chat_completed request_id=%s workspace_id=%s cached=%s latency_ms=%s tokens=%s",
        request_id,
        request.workspace_id,
        cached,
        latency_ms,
        tokens_used,
    )
    return ChatResult(
        request_id=request_id,
        content=answer,
        cached=cached,
        similarity_score=final_state.get("similarity_score"),
        files_analyzed=final_state.get("files_analyzed") or 0,
        mode=mode,
        tokens_used=tokens_used,
        cost_estimate=cost,
        latency_ms=latency_ms,
    )
