from __future__ import annotations

import json
import math

import pytest

from vaultrag.ingestion.file_parser import CSV_TOKEN_CAP, parse_content


def test_csv_rows_are_keyed_by_header_with_embedded_commas() -> None:
    content = 'name,notes,amount\nalpha,"red, green",10\nbeta,"blue",20\n'
    parsed = parse_content("data.csv", "text/csv", "ws/data.csv", content.encode("utf-8"))

    assert parsed.content_type == "csv"
    data = parsed.structured_data()
    assert data["total_rows"] == 2
    assert data["sample_rows"][0] == {"name": "alpha", "notes": "red, green", "amount": "10"}
    assert parsed.summary == "CSV file: data.csv with 3 columns and 2 rows."
    assert parsed.metadata["total_columns"] == 3


@pytest.mark.parametrize("rows", [1, 50, 5000])
def test_csv_token_estimate_is_capped(rows: int) -> None:
    content = "date,cvr\n" + "\n".join(f"2025-08-{i:05d},3.{i}" for i in range(rows))
    parsed = parse_content("metrics.csv", "text/csv", "p", content.encode("utf-8"))
    assert parsed.token_count == min(math.ceil(len(content) / 6), CSV_TOKEN_CAP)
    assert parsed.token_count <= CSV_TOKEN_CAP


def test_csv_sample_is_limited_to_ten_rows() -> None:
    content = "a,b\n" + "\n".join(f"{i},{i}" for i in range(25))
    parsed = parse_content("big.csv", "text/csv", "p", content.encode("utf-8"))
    assert len(parsed.structured_data()["sample_rows"]) == 10
    assert parsed.structured_data()["total_rows"] == 25


def test_header_only_csv_is_empty() -> None:
    parsed = parse_content("empty.csv", "text/csv", "p", b"date,cvr\n\n")
    assert parsed.summary == "Empty CSV file: empty.csv"
    assert parsed.token_count == 20


def test_cvr_export_summary_mentions_reference_day() -> None:
    parsed = parse_content("REAL 24-25.csv", "text/csv", "p", b"date,cvr\n19/08/2025,3.4\n")
    assert parsed.content_type == "csv"
    assert "3.4" in parsed.summary
    assert "19/08/2025" in parsed.summary
    assert parsed.summary.startswith("CVR Data: ")


def test_image_short_circuit() -> None:
    raw = b"\x89PNG\r\n\x1a\n" + b"\x00" * 4096
    parsed = parse_content("logo.png", "image/png", "ws/logo.png", raw)

    assert parsed.token_count == 0
    assert parsed.content_type == "image"
    payload = parsed.structured_data()
    assert set(payload) == {"file_name", "path", "size_bytes"}
    assert payload["size_bytes"] == len(raw)
    assert "~4KB" in parsed.summary


def test_json_object_summary() -> None:
    document = {"a": 1, "b": 2, "c": 3, "d": 4, "e": 5, "f": 6}
    parsed = parse_content("doc.json", "application/json", "p", json.dumps(document).encode("utf-8"))
    assert parsed.content_type == "json"
    assert parsed.summary == "JSON file with 6 main properties: a, b, c, d, e..."
    assert parsed.structured_data() == document


def test_json_array_reports_indices() -> None:
    parsed = parse_content("list.json", "application/json", "p", b"[10, 20]")
    assert parsed.summary == "JSON file with 2 main properties: 0, 1"
    assert parsed.metadata["type"] == "array"


def test_invalid_json_falls_back_to_text() -> None:
    parsed = parse_content("bad.json", "application/json", "p", b"{not json")
    assert parsed.content_type == "text"
    assert parsed.summary == "Invalid JSON file, treated as text"
    assert parsed.metadata["file_type"] == "json-invalid"


def test_text_counts_lines_and_words() -> None:
    parsed = parse_content("notes.txt", "text/plain", "p", b"hello world\nsecond line here")
    assert parsed.summary == "Text file with 2 lines and 5 words"
    assert parsed.token_count == math.ceil(len("hello world\nsecond line here") / 4)


def test_other_types_are_described_by_name() -> None:
    parsed = parse_content("deck.pdf", "application/pdf", "p", b"%PDF-1.4 binary")
    assert parsed.content_type == "other"
    assert parsed.summary == "File: deck.pdf (application/pdf)"
