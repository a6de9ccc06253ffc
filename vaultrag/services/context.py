from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import math
import re
from typing import Any, Literal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultrag.core.config import get_settings
from vaultrag.domain.models import SECTIONS, ParsedContent, VaultFile
from vaultrag.ingestion.csv_parser import CVR_FILE_MARKER
from vaultrag.persistence.db import SessionLocal
from vaultrag.persistence.repos import files as files_repo
from vaultrag.persistence.repos import parsed_content as parsed_repo
from vaultrag.persistence.repos import workspaces as workspaces_repo
from vaultrag.services.parsing import parse_vault_file
from vaultrag.services.storage import BlobStore, download_bytes, get_blob_store


logger = logging.getLogger(__name__)

NO_FILES_CONTEXT = "No files available in this workspace."
IMAGE_NOTE = "[image file, not included as text]"
INACCESSIBLE_NOTE = "[non-text or inaccessible file]"

_IMAGE_EXTENSION = re.compile(r"\.(png|jpg|jpeg|gif|webp)$", re.IGNORECASE)


@dataclass(frozen=True)
class AssembledContext:
    text: str
    files_analyzed: int
    mode: Literal["project", "global"]


def _is_image(file: VaultFile) -> bool:
    return (file.file_type or "").startswith("image/") or bool(_IMAGE_EXTENSION.search(file.file_name))


def _preview(text: str, limit: int) -> str:
    if len(text) > limit:
        return f"{text[:limit]}..."
    return text


async def _file_preview(store: BlobStore, file: VaultFile, *, limit: int, timeout_s: float) -> str:
    # A single unreadable file degrades to an inline note instead of failing the request.
    if _is_image(file):
        return IMAGE_NOTE
    try:
        raw = await download_bytes(store, file.storage_path, timeout_s=timeout_s)
        return _preview(raw.decode("utf-8"), limit)
    except Exception as exc:  # noqa: BLE001 - per-file failures are contained
        logger.warning(
            "context_file_unreadable file_id=%s error=%s",
            file.id,
            type(exc).__name__,
        )
        return INACCESSIBLE_NOTE


async def build_simple_context(
    session: AsyncSession,
    workspace_id: str,
    *,
    store: BlobStore | None = None,
) -> AssembledContext:
    """Flat workspace context: newest files first, each with a bounded text preview."""
    settings = get_settings()
    blob_store = store or get_blob_store()
    files = await files_repo.list_recent_files(session, workspace_id, limit=settings.context_max_files)
    if not files:
        return AssembledContext(text=NO_FILES_CONTEXT, files_analyzed=0, mode="global")

    blocks = ["FILES AVAILABLE:\n"]
    for file in files:
        preview = await _file_preview(
            blob_store,
            file,
            limit=settings.context_preview_chars,
            timeout_s=settings.file_download_timeout_s,
        )
        blocks.append(f"- {file.file_name} ({file.file_type})\nContent: {preview}\n")
    return AssembledContext(text="\n".join(blocks), files_analyzed=len(files), mode="global")


def _stringify(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, dict)) and not value)


def _section_rank(section: str) -> int:
    return SECTIONS.index(section) if section in SECTIONS else len(SECTIONS)


async def _configuration_block(session: AsyncSession, workspace_id: str) -> str | None:
    configs = await workspaces_repo.list_configs(session, workspace_id)
    lines: list[str] = []
    for config in sorted(configs, key=lambda item: _section_rank(item.config_section)):
        data = config.config_data or {}
        entries = [f"- {key}: {_stringify(value)}" for key, value in data.items() if not _is_empty(value)]
        if not entries:
            continue
        lines.append(f"## {config.config_section.upper()} (completion {config.completion_score}%)")
        lines.extend(entries)
    if not lines:
        return None
    return "WORKSPACE CONFIGURATION:\n" + "\n".join(lines)


# Query keywords, English and French, as users phrase metric questions.
_CVR_TERMS = ("cvr", "conversion")
_DAY_TERMS = ("hier", "yesterday", "today")
_DETAIL_TERMS = ("colonnes", "columns", "schéma", "schema", "détail", "detail", "structure")
_AUDIENCE_TERMS = ("traffic", "audience")
# Questions that put the daily conversion export ahead of every other file.
_PRIORITY_TERMS = ("cvr", "hier", "yesterday", "conversion")
_CVR_EXPORT = CVR_FILE_MARKER.lower()
_TEXT_PREVIEW_CHARS = 500
_JSON_KEYS_SHOWN = 10


def _mentions(text: str, terms: tuple[str, ...]) -> bool:
    return any(term in text for term in terms)


def _is_cvr_export(file: VaultFile) -> bool:
    return _CVR_EXPORT in file.file_name.lower()


def score_file(file: VaultFile, query: str) -> int:
    """Keyword relevance of one file to the user's question."""
    question = query.lower()
    name = file.file_name.lower()
    file_type = (file.file_type or "").lower()
    score = 0
    if _mentions(question, _CVR_TERMS) and ("real" in name or "cvr" in name):
        score += 10
    if _mentions(question, _DAY_TERMS) and ("real" in name or "daily" in name):
        score += 8
    if _mentions(question, _DETAIL_TERMS):
        score += 12
    if _mentions(question, _AUDIENCE_TERMS) and file.config_section == "behavioral":
        score += 6
    if _is_cvr_export(file):
        score += 15
    if "csv" in file_type:
        score += 3
    if "json" in file_type:
        score += 2
    return score


def rank_files(files: list[VaultFile], query: str, *, limit: int, min_score: int) -> list[VaultFile]:
    # Highest score first; ties keep the repository order.
    scored = [(score_file(file, query), index, file) for index, file in enumerate(files)]
    kept = sorted((item for item in scored if item[0] > min_score), key=lambda item: (-item[0], item[1]))
    return [file for _, _, file in kept[:limit]]


def _estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def _recent_cvr_lines(data: dict[str, Any]) -> list[str]:
    rows = data.get("recent_rows") or []
    if not rows:
        return []
    metrics = data.get("metrics") or {}
    date_column = metrics.get("date_column")
    cvr_column = metrics.get("cvr_column")
    lines = [f"RECENT DATA (last {len(rows)} rows):"]
    for row in rows:
        date = row.get(date_column) if date_column else None
        cvr = row.get(cvr_column) if cvr_column else None
        line = f"{date or 'N/A'}: CVR={cvr or 'N/A'}%"
        for label, column in (("Web", "CVR Web"), ("App", "CVR App")):
            if row.get(column):
                line += f", {label}={row[column]}%"
        lines.append(line)
    return lines


def format_parsed_file(file: VaultFile, row: ParsedContent, level: Literal["summary", "detailed"]) -> str:
    lines = [
        f"=== {file.file_name.upper()} ===",
        f"Type: {row.content_type} | {row.summary or 'No summary available'}",
    ]
    if level == "summary":
        return "\n".join(lines)
    data = row.structured_data if isinstance(row.structured_data, dict) else {}
    metadata = row.columns_metadata or {}
    if row.content_type == "csv":
        columns = list(dict.fromkeys(metadata.get("columns_detected") or []))
        if columns:
            lines.append(f"Key columns: {', '.join(columns)}")
        if _is_cvr_export(file):
            lines.extend(_recent_cvr_lines(data))
    elif row.content_type == "json":
        keys = [str(key) for key in metadata.get("keys") or []]
        lines.append(f"Properties: {', '.join(keys[:_JSON_KEYS_SHOWN])}")
    elif row.content_type == "text":
        lines.append(f"Preview: {_preview(str(data.get('content') or ''), _TEXT_PREVIEW_CHARS)}")
    return "\n".join(lines)


async def _parse_on_demand(
    files: list[VaultFile],
    *,
    workspace_id: str,
    store: BlobStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    # Each parse commits on its own session so the caller's session stays read-only.
    for file in files:
        async with session_factory() as parse_session:
            try:
                await parse_vault_file(parse_session, workspace_id=workspace_id, file_id=file.id, store=store)
            except Exception as exc:  # noqa: BLE001 - the file is then only listed by name
                logger.warning("context_parse_failed file_id=%s", file.id, exc_info=exc)


async def _files_block(
    session: AsyncSession,
    workspace_id: str,
    project_id: str,
    query: str,
    *,
    used_tokens: int,
    store: BlobStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> tuple[str | None, int]:
    settings = get_settings()
    files = await files_repo.list_project_files(session, workspace_id, project_id)
    if not files:
        return None, 0
    ranked = rank_files(
        files,
        query,
        limit=settings.context_ranked_files,
        min_score=settings.context_min_relevance,
    )
    parsed = await parsed_repo.list_successful_for_files(session, workspace_id, [f.id for f in ranked])
    missing = [file for file in ranked if file.id not in parsed]
    if missing:
        await _parse_on_demand(missing, workspace_id=workspace_id, store=store, session_factory=session_factory)
        parsed.update(
            await parsed_repo.list_successful_for_files(session, workspace_id, [f.id for f in missing])
        )

    remaining = settings.context_token_budget - used_tokens - settings.context_reserved_tokens
    sections: list[str] = []
    included: set[str] = set()
    if _mentions(query.lower(), _PRIORITY_TERMS):
        export = next((f for f in ranked if f.id in parsed and _is_cvr_export(f)), None)
        if export is not None and parsed[export.id].token_count < remaining:
            sections.append(format_parsed_file(export, parsed[export.id], "detailed"))
            included.add(export.id)
            remaining -= parsed[export.id].token_count

    for file in ranked:
        if remaining < settings.context_reserved_tokens:
            break
        row = parsed.get(file.id)
        if row is None or file.id in included:
            continue
        tokens = row.token_count or 0
        if tokens >= remaining:
            continue
        level: Literal["summary", "detailed"] = (
            "summary" if tokens > settings.context_summary_above_tokens else "detailed"
        )
        sections.append(format_parsed_file(file, row, level))
        included.add(file.id)
        remaining -= settings.context_summary_cost_tokens if level == "summary" else tokens

    blocks: list[str] = []
    if sections:
        blocks.append("RELEVANT FILES:\n" + "\n\n".join(sections))
    others = [file for file in files if file.id not in included][: settings.context_max_files]
    if others:
        blocks.append(
            "OTHER FILES AVAILABLE:\n" + "\n".join(f"- {f.file_name} ({f.config_section})" for f in others)
        )
    return "\n\n".join(blocks) or None, len(included)


async def _ab_tests_block(session: AsyncSession, workspace_id: str) -> str | None:
    tests = await workspaces_repo.list_ab_tests(session, workspace_id)
    if not tests:
        return None
    lines: list[str] = []
    for test in tests:
        lines.append(f"- {test.name} [{test.status or 'unknown'}]")
        if test.hypothesis:
            lines.append(f"  Hypothesis: {test.hypothesis}")
        if not _is_empty(test.metrics_json):
            lines.append(f"  Metrics: {_stringify(test.metrics_json)}")
    return "A/B TESTS:\n" + "\n".join(lines)


async def _analytics_block(session: AsyncSession, workspace_id: str) -> str | None:
    exports = await workspaces_repo.list_analytics_exports(session, workspace_id)
    if not exports:
        return None
    lines: list[str] = []
    for export in exports:
        lines.append(f"- {export.source}: {export.name}")
        if not _is_empty(export.analysis_results):
            lines.append(f"  Results: {_stringify(export.analysis_results)}")
    return "ANALYTICS EXPORTS:\n" + "\n".join(lines)


async def _knowledge_base_block(session: AsyncSession, workspace_id: str) -> str | None:
    entries = await workspaces_repo.list_knowledge_base(session, workspace_id)
    if not entries:
        return None
    limit = get_settings().context_kb_preview_chars
    lines: list[str] = []
    for entry in entries:
        lines.append(f"- {entry.title}")
        if entry.content:
            lines.append(f"  {_preview(entry.content, limit)}")
    return "KNOWLEDGE BASE:\n" + "\n".join(lines)


async def _workspace_line(session: AsyncSession, workspace_id: str) -> str | None:
    workspace = await workspaces_repo.get_workspace(session, workspace_id)
    if workspace is None:
        return None
    return f"WORKSPACE: {workspace.name} ({workspace.plan or 'n/a'})"


async def build_project_context(
    session: AsyncSession,
    workspace_id: str,
    project_id: str,
    *,
    query: str = "",
    store: BlobStore | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AssembledContext:
    """Section-aware context: configuration, query-ranked files and business records.

    Ranked files are rendered within the token budget; unparsed ones are parsed on
    demand. Empty collections are left out.
    """
    header = [f"PROJECT: {project_id}"]
    workspace_line = await _workspace_line(session, workspace_id)
    if workspace_line:
        header.append(workspace_line)
    configuration = await _configuration_block(session, workspace_id)
    files_block, included = await _files_block(
        session,
        workspace_id,
        project_id,
        query,
        used_tokens=_estimate_tokens("\n".join(header + [configuration or ""])),
        store=store or get_blob_store(),
        session_factory=session_factory or SessionLocal,
    )
    blocks = [
        configuration,
        files_block,
        await _ab_tests_block(session, workspace_id),
        await _analytics_block(session, workspace_id),
        await _knowledge_base_block(session, workspace_id),
    ]
    present = [block for block in blocks if block]
    if not present:
        return AssembledContext(text=NO_FILES_CONTEXT, files_analyzed=0, mode="project")
    text = "\n".join(header) + "\n\n" + "\n\n".join(present)
    return AssembledContext(text=text, files_analyzed=included, mode="project")


async def build_context(
    session: AsyncSession,
    workspace_id: str,
    project_id: str | None = None,
    *,
    query: str = "",
    store: BlobStore | None = None,
) -> AssembledContext:
    # Project scope selects the section-aware path; otherwise the flat workspace view.
    if project_id:
        return await build_project_context(session, workspace_id, project_id, query=query, store=store)
    return await build_simple_context(session, workspace_id, store=store)
