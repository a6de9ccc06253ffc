from __future__ import annotations

from typing import Any, Optional, TypedDict


class ChatState(TypedDict, total=False):
    request_id: str
    workspace_id: str
    project_id: Optional[str]
    user_id: str
    user_message: str
    mode: str
    context: Optional[str]
    prompt_text: Optional[str]
    files_analyzed: int
    answer: Optional[str]
    cached: bool
    cache_stored: bool
    similarity_score: Optional[float]
    tokens_saved: int
    timings_ms: dict[str, Any]
