from __future__ import annotations

import asyncio
import time
from typing import Callable

from langgraph.graph import END, StateGraph

from vaultrag.agent.prompts import build_messages, prompt_text
from vaultrag.core.config import get_settings
from vaultrag.core.errors import UpstreamModelError, VaultError
from vaultrag.domain.state import ChatState
from vaultrag.services.context import build_context
from vaultrag.services.semantic_cache import SemanticCache, lookup_or_miss, store_quietly
from vaultrag.services.storage import BlobStore


def _timed(state: ChatState, key: str, started: float) -> dict:
    timings = dict(state.get("timings_ms") or {})
    timings[key] = (time.monotonic() - started) * 1000.0
    return timings


def build_graph(
    *,
    llm,
    session,
    cache: SemanticCache,
    token_callback: Callable[[str], None],
    store: BlobStore | None = None,
    should_store: Callable[[], bool] | None = None,
):
    graph = StateGraph(ChatState)
    settings = get_settings()

    async def lookup_cache(state: ChatState) -> dict:
        started = time.monotonic()
        if not settings.cache_enabled:
            return {"cached": False, "timings_ms": _timed(state, "cache_lookup", started)}
        hit = await lookup_or_miss(
            cache,
            session,
            query=state["user_message"],
            workspace_id=state["workspace_id"],
            user_id=state.get("user_id"),
            request_id=state.get("request_id"),
        )
        timings = _timed(state, "cache_lookup", started)
        if hit is None:
            return {"cached": False, "timings_ms": timings}
        return {
            "cached": True,
            "answer": hit.response_content,
            "similarity_score": hit.similarity_score,
            "tokens_saved": hit.tokens_saved,
            "timings_ms": timings,
        }

    def route_after_lookup(state: ChatState) -> str:
        return "hit" if state.get("cached") else "miss"

    async def assemble_context(state: ChatState) -> dict:
        started = time.monotonic()
        assembled = await build_context(
            session,
            state["workspace_id"],
            state.get("project_id"),
            query=state["user_message"],
            store=store,
        )
        return {
            "context": assembled.text,
            "files_analyzed": assembled.files_analyzed,
            "mode": assembled.mode,
            "timings_ms": _timed(state, "context", started),
        }

    async def generate(state: ChatState) -> dict:
        started = time.monotonic()
        messages = build_messages(state.get("context") or "", state["user_message"], state.get("project_id"))
        answer_parts: list[str] = []

        def run_stream() -> None:
            for delta in llm.stream(messages):
                token_callback(delta)
                answer_parts.append(delta)

        try:
            await asyncio.to_thread(run_stream)
        except VaultError:
            raise
        except Exception as exc:
            raise UpstreamModelError("Model call failed.") from exc
        return {
            "answer": "".join(answer_parts),
            "prompt_text": prompt_text(messages),
            "timings_ms": _timed(state, "generation", started),
        }

    async def store_cache(state: ChatState) -> dict:
        # Only full answers are cached, and never after the client went away.
        started = time.monotonic()
        answer = state.get("answer") or ""
        if not settings.cache_enabled or not answer or (should_store is not None and not should_store()):
            return {"cache_stored": False, "timings_ms": _timed(state, "cache_store", started)}
        stored = await store_quietly(
            cache,
            session,
            query=state["user_message"],
            response=answer,
            workspace_id=state["workspace_id"],
        )
        return {"cache_stored": stored is not None, "timings_ms": _timed(state, "cache_store", started)}

    graph.add_node("lookup_cache", lookup_cache)
    graph.add_node("build_context", assemble_context)
    graph.add_node("generate", generate)
    graph.add_node("store_cache", store_cache)

    graph.set_entry_point("lookup_cache")
    graph.add_conditional_edges("lookup_cache", route_after_lookup, {"hit": END, "miss": "build_context"})
    graph.add_edge("build_context", "generate")
    graph.add_edge("generate", "store_cache")
    graph.add_edge("store_cache", END)

    return graph.compile()


async def run_graph(
    *,
    llm,
    session,
    state: ChatState,
    cache: SemanticCache,
    token_callback: Callable[[str], None],
    store: BlobStore | None = None,
    should_store: Callable[[], bool] | None = None,
) -> ChatState:
    graph = build_graph(
        llm=llm,
        session=session,
        cache=cache,
        token_callback=token_callback,
        store=store,
        should_store=should_store,
    )
    return await graph.ainvoke(state)
