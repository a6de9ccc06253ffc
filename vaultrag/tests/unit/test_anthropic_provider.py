from __future__ import annotations

import asyncio
import json
import threading

import httpx
import pytest

from vaultrag.core.config import get_settings
from vaultrag.core.errors import ModelConfigError, UpstreamModelError
from vaultrag.providers.llm.anthropic import AnthropicProvider, iter_text_deltas, parse_retry_delays


def _sse(*events: dict) -> bytes:
    lines: list[str] = []
    for event in events:
        lines.append(f"event: {event['type']}")
        lines.append(f"data: {json.dumps(event)}")
        lines.append("")
    return "\n".join(lines).encode("utf-8")


def _delta(text: str) -> dict:
    return {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}


_OK_BODY = _sse(
    {"type": "message_start", "message": {"id": "msg_1"}},
    _delta("Hello"),
    _delta(" there"),
    {"type": "message_stop"},
)


@pytest.fixture
def api_key(monkeypatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setenv("LLM_RETRY_DELAYS_MS", "1000,2000")
    get_settings.cache_clear()


def test_iter_text_deltas_skips_non_text_events() -> None:
    lines = _OK_BODY.decode("utf-8").split("\n")
    assert list(iter_text_deltas(lines)) == ["Hello", " there"]


def test_iter_text_deltas_raises_on_error_event() -> None:
    lines = [f"data: {json.dumps({'type': 'error', 'error': {'type': 'overloaded_error'}})}"]
    with pytest.raises(UpstreamModelError):
        list(iter_text_deltas(lines))


def test_parse_retry_delays_drops_malformed_entries() -> None:
    assert parse_retry_delays("1000, x,2000,") == [1.0, 2.0]


def test_missing_api_key_is_a_config_error(monkeypatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    get_settings.cache_clear()
    provider = AnthropicProvider()
    with pytest.raises(ModelConfigError):
        next(iter(provider.stream([{"role": "user", "content": "hi"}])))


def test_stream_yields_deltas_and_sends_system_prompt(api_key) -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.headers["x-api-key"] == "sk-test"
        return httpx.Response(200, content=_OK_BODY, headers={"content-type": "text/event-stream"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = AnthropicProvider(request_id="r1", client=client)
    messages = [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}]

    assert "".join(provider.stream(messages)) == "Hello there"
    assert seen[0]["system"] == "be brief"
    assert seen[0]["messages"] == [{"role": "user", "content": "hi"}]
    assert seen[0]["stream"] is True


def test_overloaded_responses_are_retried_with_backoff(api_key) -> None:
    statuses = iter([529, 429, 200])
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        if status != 200:
            return httpx.Response(status, json={"type": "error"})
        return httpx.Response(200, content=_OK_BODY)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = AnthropicProvider(client=client, sleep=sleeps.append)

    assert "".join(provider.stream([{"role": "user", "content": "hi"}])) == "Hello there"
    assert sleeps == [1.0, 2.0]


def test_retries_stop_when_delays_run_out(api_key) -> None:
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(529, json={"type": "error"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = AnthropicProvider(client=client, sleep=sleeps.append)

    with pytest.raises(UpstreamModelError):
        list(provider.stream([{"role": "user", "content": "hi"}]))
    assert sleeps == [1.0, 2.0]


def test_client_errors_fail_fast(api_key) -> None:
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"type": "error"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = AnthropicProvider(client=client, sleep=sleeps.append)

    with pytest.raises(UpstreamModelError):
        list(provider.stream([{"role": "user", "content": "hi"}]))
    assert sleeps == []


def test_transport_errors_become_upstream_errors(api_key) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = AnthropicProvider(client=client)

    with pytest.raises(UpstreamModelError):
        list(provider.stream([{"role": "user", "content": "hi"}]))


def test_cancel_event_stops_the_stream(api_key) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_OK_BODY)

    cancel_event = threading.Event()
    cancel_event.set()
    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = AnthropicProvider(cancel_event=cancel_event, client=client)

    with pytest.raises(asyncio.CancelledError):
        list(provider.stream([{"role": "user", "content": "hi"}]))
