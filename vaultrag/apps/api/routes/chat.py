from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.apps.api.deps import get_db, get_store
from vaultrag.apps.api.errors import map_error
from vaultrag.apps.api.openapi import CHAT_ERROR_RESPONSES
from vaultrag.apps.api.response import get_request_id, success_response
from vaultrag.core.config import get_settings
from vaultrag.providers.llm.factory import get_llm_provider
from vaultrag.services.chat import ChatRequest, ChatResult, authorize_chat, run_chat
from vaultrag.services.storage import BlobStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["chat"], responses=CHAT_ERROR_RESPONSES)


class ChatPayload(BaseModel):
    workspace_id: str
    user_id: str
    message: str = Field(min_length=1)
    project_id: str | None = None
    stream: bool = True


def _wrap_payload(payload_type: str, request_id: str, workspace_id: str, data: dict) -> dict:
    # Always include request/workspace identifiers for traceability across streamed events.
    return {
        "type": payload_type,
        "request_id": request_id,
        "workspace_id": workspace_id,
        "data": data,
    }


def _sse_message(payload: dict) -> str:
    # SSE framing invariants: event name must be "message" and data must be a compact JSON line.
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"event: message\ndata: {data}\n\n"


_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Content-Type": "text/event-stream",
    "Connection": "keep-alive",
}


@router.post("/chat")
async def chat(
    payload: ChatPayload,
    http_request: Request,
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_store),
):
    request_id = get_request_id(http_request)
    chat_request = ChatRequest(
        workspace_id=payload.workspace_id,
        user_id=payload.user_id,
        message=payload.message,
        project_id=payload.project_id,
        request_id=request_id,
    )
    # Gates run before any streaming so denials surface as plain 403/429 responses.
    await authorize_chat(db, chat_request)

    # Thread-safe cancel signal so the blocking model stream can exit promptly.
    cancel_event = threading.Event()
    llm = get_llm_provider(request_id=request_id, cancel_event=cancel_event)

    if not payload.stream:
        result = await run_chat(db, chat_request, llm=llm, store=store)
        return success_response(request=http_request, data=result.as_response())

    # Use a shared queue for token events to preserve stream order.
    queue: asyncio.Queue[str] = asyncio.Queue()
    done = asyncio.Event()
    disconnect_event = asyncio.Event()
    final: ChatResult | None = None
    error: Exception | None = None
    loop = asyncio.get_running_loop()

    def token_callback(delta: str) -> None:
        # Drop tokens once the client disconnects to avoid buffering unused output.
        if disconnect_event.is_set():
            return
        loop.call_soon_threadsafe(queue.put_nowait, delta)

    async def run_pipeline() -> None:
        nonlocal final, error
        try:
            final = await run_chat(
                db,
                chat_request,
                llm=llm,
                token_callback=token_callback,
                store=store,
                should_store=lambda: not disconnect_event.is_set(),
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = exc
            logger.exception("chat_stream_failed request_id=%s", request_id)
        finally:
            done.set()

    poll_interval = max(0.01, float(get_settings().chat_sse_poll_interval_s))

    async def event_stream() -> AsyncGenerator[str, None]:
        yield _sse_message(
            _wrap_payload(
                "request.accepted",
                request_id,
                payload.workspace_id,
                {"mode": "project" if payload.project_id else "global"},
            )
        )
        task = asyncio.create_task(run_pipeline())
        try:
            while not done.is_set() or not queue.empty():
                if await http_request.is_disconnected():
                    # Stop streaming immediately when the client disconnects.
                    disconnect_event.set()
                    cancel_event.set()
                    break
                try:
                    delta = await asyncio.wait_for(queue.get(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    continue
                # Stream each delta as its own SSE message to avoid buffering output.
                yield _sse_message(
                    _wrap_payload("token.delta", request_id, payload.workspace_id, {"delta": delta})
                )

            if disconnect_event.is_set():
                # Do not emit final/error events after a client disconnects.
                return

            await task

            if error is not None:
                _status, code, message, details = map_error(error)
                data = {"code": code, "message": message}
                if details:
                    data["details"] = details
                yield _sse_message(_wrap_payload("error", request_id, payload.workspace_id, data))
                return

            assert final is not None
            if final.cached:
                yield _sse_message(
                    _wrap_payload(
                        "cache.hit",
                        request_id,
                        payload.workspace_id,
                        {"similarity_score": final.similarity_score},
                    )
                )
                yield _sse_message(
                    _wrap_payload("token.delta", request_id, payload.workspace_id, {"delta": final.content})
                )
            yield _sse_message(
                _wrap_payload("message.final", request_id, payload.workspace_id, final.as_response())
            )
            yield _sse_message(_wrap_payload("done", request_id, payload.workspace_id, {}))
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(event_stream(), headers=_SSE_HEADERS, media_type="text/event-stream")

