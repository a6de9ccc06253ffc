from __future__ import annotations

import re
from typing import Any


# Header patterns for business metrics worth surfacing to the model.
IMPORTANT_COLUMN_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("cvr", re.compile(r"(cvr|conversion|taux)", re.IGNORECASE)),
    ("date", re.compile(r"(date|jour|day)", re.IGNORECASE)),
    ("traffic", re.compile(r"(traffic|visits|sessions)", re.IGNORECASE)),
    ("revenue", re.compile(r"(revenue|ca|chiffre)", re.IGNORECASE)),
    ("orders", re.compile(r"(orders|commandes)", re.IGNORECASE)),
)

# File-name marker for daily conversion-rate exports.
CVR_FILE_MARKER = "REAL 24-25"
# Day the conversion-rate extractor reports on.
CVR_REFERENCE_DATE = "19/08/2025"

_CVR_DATE_COLUMN = re.compile(r"(date|jour)", re.IGNORECASE)
_CVR_VALUE_COLUMN = re.compile(r"(cvr|conversion)", re.IGNORECASE)


def split_csv_line(line: str) -> list[str]:
    # Single pass: commas inside quotes are literal and "" is an escaped quote.
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    index = 0
    length = len(line)
    while index < length:
        char = line[index]
        if char == '"':
            if in_quotes and index + 1 < length and line[index + 1] == '"':
                current.append('"')
                index += 2
                continue
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        index += 1
    fields.append("".join(current).strip())
    return fields


def detect_important_columns(headers: list[str]) -> list[str]:
    # A header is listed once per pattern it matches.
    detected: list[str] = []
    for header in headers:
        for _, pattern in IMPORTANT_COLUMN_PATTERNS:
            if pattern.search(header):
                detected.append(header)
    return detected


def _find_column(headers: list[str], pattern: re.Pattern[str]) -> int | None:
    for index, header in enumerate(headers):
        if pattern.search(header):
            return index
    return None


def analyze_cvr_data(headers: list[str], rows: list[list[str]]) -> tuple[str, dict[str, Any]]:
    """Locate the date and CVR columns and report the reference day's CVR.

    Returns ``(summary, metrics)``; metrics is empty when either column is missing.
    """
    date_col = _find_column(headers, _CVR_DATE_COLUMN)
    cvr_col = _find_column(headers, _CVR_VALUE_COLUMN)
    if date_col is None or cvr_col is None:
        return "CVR data detected but unable to analyze columns", {}

    metrics: dict[str, Any] = {
        "total_days": len(rows),
        "date_column": headers[date_col],
        "cvr_column": headers[cvr_col],
    }
    for row in rows:
        if date_col < len(row) and row[date_col] == CVR_REFERENCE_DATE:
            value = row[cvr_col] if cvr_col < len(row) else ""
            metrics["yesterday_cvr"] = value
            return (
                f"CVR data with {len(rows)} days. Yesterday ({CVR_REFERENCE_DATE}): {value}% CVR",
                metrics,
            )
    return f"CVR data with {len(rows)} days of data", metrics
