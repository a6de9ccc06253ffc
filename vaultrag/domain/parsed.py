from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


ContentType = Literal["csv", "json", "text", "image", "other", "error"]
ParsingStatus = Literal["pending", "processing", "success", "error"]


@dataclass(frozen=True)
class CsvPayload:
    headers: list[str]
    sample_rows: list[dict[str, str]]
    total_rows: int
    metrics: dict[str, Any] = field(default_factory=dict)
    # Trailing rows, newest data last in daily exports.
    recent_rows: list[dict[str, str]] = field(default_factory=list)

    kind: Literal["csv"] = "csv"

    def to_json(self) -> dict[str, Any]:
        return {
            "headers": self.headers,
            "sample_rows": self.sample_rows,
            "total_rows": self.total_rows,
            "metrics": self.metrics,
            "recent_rows": self.recent_rows,
        }


@dataclass(frozen=True)
class JsonPayload:
    # Parsed document as-is; root may be an object, array or scalar.
    data: Any

    kind: Literal["json"] = "json"

    def to_json(self) -> Any:
        return self.data


@dataclass(frozen=True)
class TextPayload:
    content: str

    kind: Literal["text"] = "text"

    def to_json(self) -> dict[str, Any]:
        return {"content": self.content}


@dataclass(frozen=True)
class ImagePayload:
    # Never carries file bytes or decoded text.
    file_name: str
    path: str
    size_bytes: int

    kind: Literal["image"] = "image"

    def to_json(self) -> dict[str, Any]:
        return {"file_name": self.file_name, "path": self.path, "size_bytes": self.size_bytes}


@dataclass(frozen=True)
class OtherPayload:
    size: int

    kind: Literal["other"] = "other"

    def to_json(self) -> dict[str, Any]:
        return {"size": self.size}


ParsedPayload = Union[CsvPayload, JsonPayload, TextPayload, ImagePayload, OtherPayload]


@dataclass(frozen=True)
class ParsedFile:
    """Result of parsing one uploaded file, before it is persisted."""

    content_type: ContentType
    payload: ParsedPayload
    summary: str
    metadata: dict[str, Any]
    token_count: int

    def structured_data(self) -> Any:
        return self.payload.to_json()
