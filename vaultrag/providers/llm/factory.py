from __future__ import annotations

import threading

from vaultrag.core.config import get_settings
from vaultrag.providers.llm.anthropic import AnthropicProvider
from vaultrag.providers.llm.fake import FakeLLMProvider


def get_llm_provider(request_id: str, cancel_event: threading.Event):
    settings = get_settings()
    provider = (settings.llm_provider or "anthropic").lower()

    if provider == "fake":
        return FakeLLMProvider()
    return AnthropicProvider(request_id=request_id, cancel_event=cancel_event)
