from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import Callable, Iterable, Iterator

import httpx

from vaultrag.core.config import get_settings
from vaultrag.core.errors import ModelConfigError, ModelTimeoutError, UpstreamModelError

logger = logging.getLogger(__name__)

# Rate-limited and overloaded responses are worth retrying; other 4xx are not.
_RETRYABLE_STATUS = {429, 529}


def parse_retry_delays(raw: str) -> list[float]:
    # Comma-delimited milliseconds -> seconds; malformed entries are dropped.
    delays: list[float] = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            delays.append(max(0.0, float(item) / 1000.0))
        except ValueError:
            continue
    return delays


def iter_text_deltas(lines: Iterable[str]) -> Iterator[str]:
    """Yield text deltas from Messages API server-sent event lines."""
    for line in lines:
        if not line.startswith("data:"):
            continue
        raw = line[len("data:"):].strip()
        if not raw:
            continue
        try:
            event = json.loads(raw)
        except ValueError:
            continue
        event_type = event.get("type")
        if event_type == "error":
            error = event.get("error") or {}
            raise UpstreamModelError(f"Model stream error: {error.get('type', 'unknown')}")
        if event_type != "content_block_delta":
            continue
        delta = event.get("delta") or {}
        text = delta.get("text")
        if text:
            yield text


class AnthropicProvider:
    def __init__(
        self,
        request_id: str | None = None,
        cancel_event: threading.Event | None = None,
        *,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = get_settings()
        self._request_id = request_id
        # Optional cancellation signal from the caller to stop streaming early.
        self._cancel_event = cancel_event
        self._client = client
        self._sleep = sleep

    def _validate_config(self) -> str:
        # Fail fast to avoid confusing upstream auth errors.
        if not self._settings.anthropic_api_key:
            raise ModelConfigError("Model config missing: set ANTHROPIC_API_KEY in .env.")
        return self._settings.anthropic_api_key

    def _build_body(self, messages: list[dict]) -> dict:
        # System guidance goes in the top-level field; the rest keep their roles.
        system = "\n\n".join(m.get("content", "") for m in messages if m.get("role") == "system")
        turns = [
            {"role": m.get("role", "user"), "content": m.get("content", "")}
            for m in messages
            if m.get("role") != "system"
        ]
        body = {
            "model": self._settings.llm_model,
            "max_tokens": self._settings.llm_max_tokens,
            "stream": True,
            "messages": turns,
        }
        if system:
            body["system"] = system
        return body

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def stream(self, messages: list[dict]) -> Iterable[str]:
        api_key = self._validate_config()
        timeout_s = max(1.0, float(self._settings.llm_timeout_s))
        delays = parse_retry_delays(self._settings.llm_retry_delays_ms)
        url = f"{self._settings.anthropic_base_url.rstrip('/')}/v1/messages"
        headers = {
            "x-api-key": api_key,
            "anthropic-version": self._settings.anthropic_version,
            "content-type": "application/json",
            "accept": "text/event-stream",
        }
        body = self._build_body(messages)
        client = self._client or httpx.Client(timeout=httpx.Timeout(timeout_s, connect=10.0))
        deadline = time.monotonic() + timeout_s
        attempt = 0
        logger.info(
            "anthropic_stream_start request_id=%s model=%s",
            self._request_id,
            self._settings.llm_model,
        )
        try:
            while True:
                with client.stream("POST", url, headers=headers, json=body) as response:
                    status = response.status_code
                    if status in _RETRYABLE_STATUS and attempt < len(delays):
                        delay = delays[attempt]
                        attempt += 1
                        if time.monotonic() + delay > deadline:
                            raise ModelTimeoutError("Model call timed out while retrying.")
                        logger.warning(
                            "anthropic_retry request_id=%s status=%s attempt=%s delay_s=%s",
                            self._request_id,
                            status,
                            attempt,
                            delay,
                        )
                        response.close()
                        self._sleep(delay)
                        continue
                    if status >= 400:
                        logger.error(
                            "anthropic_stream_error request_id=%s status=%s",
                            self._request_id,
                            status,
                        )
                        raise UpstreamModelError(f"Model API error: {status}")
                    for delta in iter_text_deltas(response.iter_lines()):
                        if self._cancelled():
                            # Propagate cancellation to stop the caller's stream promptly.
                            raise asyncio.CancelledError
                        if time.monotonic() > deadline:
                            raise ModelTimeoutError("Model stream timed out.")
                        # Yield token deltas immediately to preserve streaming behavior.
                        yield delta
                    return
        except httpx.TimeoutException as exc:
            logger.warning("anthropic_stream_timeout request_id=%s", self._request_id)
            raise ModelTimeoutError("Model call timed out.") from exc
        except httpx.HTTPError as exc:
            logger.error("anthropic_transport_error request_id=%s", self._request_id)
            raise UpstreamModelError("Model request failed.") from exc
        finally:
            if self._client is None:
                client.close()
