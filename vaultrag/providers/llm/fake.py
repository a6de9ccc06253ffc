from __future__ import annotations

import threading
from typing import Iterable

from vaultrag.core.errors import UpstreamModelError


class FakeLLMProvider:
    def __init__(self, response: str = "This is a fake response.", *, fail: bool = False) -> None:
        # Deterministic response keeps tests stable without external calls.
        self._response = response
        self._fail = fail
        self._lock = threading.Lock()
        self.calls = 0
        self.last_messages: list[dict] | None = None

    def stream(self, messages: list[dict]) -> Iterable[str]:
        # Count invocations so tests can assert cache hits skip the model.
        with self._lock:
            self.calls += 1
            self.last_messages = messages
        if self._fail:
            raise UpstreamModelError("Fake provider failure")
        for token in self._response.split():
            yield f"{token} "
