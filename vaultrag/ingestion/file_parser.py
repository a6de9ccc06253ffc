from __future__ import annotations

import json
import math
import re
from typing import Any

from vaultrag.domain.parsed import (
    CsvPayload,
    ImagePayload,
    JsonPayload,
    OtherPayload,
    ParsedFile,
    TextPayload,
)
from vaultrag.ingestion.csv_parser import (
    CVR_FILE_MARKER,
    analyze_cvr_data,
    detect_important_columns,
    split_csv_line,
)


# CSV estimates are capped so one spreadsheet cannot dominate the context budget.
CSV_TOKEN_CAP = 2000
CSV_CHARS_PER_TOKEN = 6
CHARS_PER_TOKEN = 4
EMPTY_CSV_TOKENS = 20
CSV_SAMPLE_ROWS = 10
CSV_RECENT_ROWS = 7

_WHITESPACE = re.compile(r"\s+")


def estimate_text_tokens(content: str) -> int:
    return math.ceil(len(content) / CHARS_PER_TOKEN)


def estimate_csv_tokens(content: str) -> int:
    return min(math.ceil(len(content) / CSV_CHARS_PER_TOKEN), CSV_TOKEN_CAP)


def _row_dict(headers: list[str], row: list[str]) -> dict[str, str]:
    return {header: (row[index] if index < len(row) else "") for index, header in enumerate(headers)}


def parse_csv(content: str, file_name: str) -> ParsedFile:
    # Blank lines are dropped before the header/data split.
    lines = [line for line in content.split("\n") if line.strip()]
    if len(lines) < 2:
        return ParsedFile(
            content_type="csv",
            payload=CsvPayload(headers=[], sample_rows=[], total_rows=0),
            summary=f"Empty CSV file: {file_name}",
            metadata={"columns_detected": []},
            token_count=EMPTY_CSV_TOKENS,
        )

    headers = split_csv_line(lines[0])
    rows = [split_csv_line(line) for line in lines[1:]]
    sample_rows = [_row_dict(headers, row) for row in rows[:CSV_SAMPLE_ROWS]]
    recent_rows = [_row_dict(headers, row) for row in rows[-CSV_RECENT_ROWS:]]

    summary = f"CSV file: {file_name} with {len(headers)} columns and {len(rows)} rows."
    metrics: dict[str, Any] = {}
    if CVR_FILE_MARKER in file_name:
        cvr_summary, metrics = analyze_cvr_data(headers, rows)
        summary = f"CVR Data: {cvr_summary}"

    return ParsedFile(
        content_type="csv",
        payload=CsvPayload(
            headers=headers,
            sample_rows=sample_rows,
            total_rows=len(rows),
            metrics=metrics,
            recent_rows=recent_rows,
        ),
        summary=summary,
        metadata={
            "columns_detected": detect_important_columns(headers),
            "total_columns": len(headers),
            "total_rows": len(rows),
            "file_type": "csv",
        },
        token_count=estimate_csv_tokens(content),
    )


def _top_level_keys(data: Any) -> list[str]:
    # Arrays report their indices, scalars have no keys.
    if isinstance(data, dict):
        return [str(key) for key in data.keys()]
    if isinstance(data, list):
        return [str(index) for index in range(len(data))]
    return []


def parse_json(content: str) -> ParsedFile:
    try:
        data = json.loads(content)
    except ValueError:
        return ParsedFile(
            content_type="text",
            payload=TextPayload(content=content),
            summary="Invalid JSON file, treated as text",
            metadata={"file_type": "json-invalid"},
            token_count=estimate_text_tokens(content),
        )
    keys = _top_level_keys(data)
    suffix = "..." if len(keys) > 5 else ""
    return ParsedFile(
        content_type="json",
        payload=JsonPayload(data=data),
        summary=f"JSON file with {len(keys)} main properties: {', '.join(keys[:5])}{suffix}",
        metadata={
            "keys": keys,
            "type": "array" if isinstance(data, list) else "object",
            "size": len(keys),
        },
        token_count=estimate_text_tokens(content),
    )


def parse_text(content: str) -> ParsedFile:
    lines = len(content.split("\n"))
    words = len(_WHITESPACE.split(content))
    return ParsedFile(
        content_type="text",
        payload=TextPayload(content=content),
        summary=f"Text file with {lines} lines and {words} words",
        metadata={"lines": lines, "words": words, "characters": len(content)},
        token_count=estimate_text_tokens(content),
    )


def parse_image(file_name: str, file_type: str, storage_path: str, size_bytes: int) -> ParsedFile:
    # Images are never decoded; only their locator and size are kept.
    size_kb = math.floor(size_bytes / 1024 + 0.5)
    return ParsedFile(
        content_type="image",
        payload=ImagePayload(file_name=file_name, path=storage_path, size_bytes=size_bytes),
        summary=f"Image file: {file_name} ({file_type}), ~{size_kb}KB",
        metadata={"file_type": file_type, "size_bytes": size_bytes},
        token_count=0,
    )


def parse_content(file_name: str, file_type: str, storage_path: str, raw_bytes: bytes) -> ParsedFile:
    """Dispatch raw file bytes to the parser matching the declared MIME type."""
    declared = file_type or ""
    if declared.startswith("image/"):
        return parse_image(file_name, declared, storage_path, len(raw_bytes))

    content = raw_bytes.decode("utf-8", errors="replace")
    if declared == "text/csv":
        return parse_csv(content, file_name)
    if declared == "application/json":
        return parse_json(content)
    if declared.startswith("text/"):
        return parse_text(content)
    return ParsedFile(
        content_type="other",
        payload=OtherPayload(size=len(content)),
        summary=f"File: {file_name} ({declared})",
        metadata={"file_type": declared},
        token_count=estimate_text_tokens(content),
    )
