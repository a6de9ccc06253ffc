from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from vaultrag.core.config import get_settings
from vaultrag.domain.models import AbTest, KnowledgeBaseEntry, ParsedContent, VaultConfig, VaultFile
from vaultrag.persistence.db import SessionLocal
from vaultrag.services.context import (
    IMAGE_NOTE,
    INACCESSIBLE_NOTE,
    NO_FILES_CONTEXT,
    build_context,
    rank_files,
    score_file,
)
from vaultrag.services.parsing import parse_vault_file
from vaultrag.tests.utils.vault import add_file, create_workspace


async def test_empty_workspace_yields_placeholder(blob_store) -> None:
    workspace_id = await create_workspace()
    async with SessionLocal() as session:
        assembled = await build_context(session, workspace_id, store=blob_store)
    assert assembled.text == NO_FILES_CONTEXT
    assert assembled.files_analyzed == 0
    assert assembled.mode == "global"


async def test_simple_context_lists_newest_files_with_previews(blob_store) -> None:
    workspace_id = await create_workspace()
    base = datetime.now(timezone.utc) - timedelta(hours=1)
    await add_file(
        blob_store,
        workspace_id=workspace_id,
        file_name="old.txt",
        file_type="text/plain",
        content=b"x" * 1500,
        created_at=base,
    )
    await add_file(
        blob_store,
        workspace_id=workspace_id,
        file_name="new.csv",
        file_type="text/csv",
        content=b"date,cvr\n19/08/2025,3.4",
        created_at=base + timedelta(minutes=30),
    )
    await add_file(
        blob_store,
        workspace_id=workspace_id,
        file_name="chart.png",
        file_type="image/png",
        content=b"\x89PNG",
        created_at=base + timedelta(minutes=10),
    )
    async with SessionLocal() as session:
        assembled = await build_context(session, workspace_id, store=blob_store)

    text = assembled.text
    assert text.startswith("FILES AVAILABLE:")
    assert assembled.files_analyzed == 3
    assert text.index("new.csv") < text.index("chart.png") < text.index("old.txt")
    assert "Content: date,cvr\n19/08/2025,3.4" in text
    assert f"Content: {IMAGE_NOTE}" in text
    assert "x" * 1000 + "..." in text
    assert "x" * 1001 not in text


async def test_simple_context_caps_file_count(blob_store, monkeypatch) -> None:
    monkeypatch.setenv("CONTEXT_MAX_FILES", "2")
    get_settings.cache_clear()
    workspace_id = await create_workspace()
    for index in range(3):
        await add_file(
            blob_store,
            workspace_id=workspace_id,
            file_name=f"f{index}.txt",
            file_type="text/plain",
            content=b"hello",
        )
    async with SessionLocal() as session:
        assembled = await build_context(session, workspace_id, store=blob_store)
    assert assembled.files_analyzed == 2


async def test_unreadable_file_degrades_to_note(blob_store) -> None:
    workspace_id = await create_workspace()
    await add_file(
        blob_store,
        workspace_id=workspace_id,
        file_name="latin1.txt",
        file_type="text/plain",
        content="caf\xe9".encode("latin-1"),
    )
    async with SessionLocal() as session:
        assembled = await build_context(session, workspace_id, store=blob_store)
    assert f"Content: {INACCESSIBLE_NOTE}" in assembled.text


async def test_project_context_groups_sections_and_business_records(blob_store) -> None:
    workspace_id = await create_workspace()
    file_id = await add_file(
        blob_store,
        workspace_id=workspace_id,
        file_name="REAL 24-25.csv",
        file_type="text/csv",
        content=b"date,cvr\n19/08/2025,3.4",
        project_id="p1",
        config_section="business",
    )
    await add_file(
        blob_store,
        workspace_id=workspace_id,
        file_name="other-project.txt",
        file_type="text/plain",
        content=b"hidden",
        project_id="p2",
    )
    async with SessionLocal() as session:
        await parse_vault_file(session, workspace_id=workspace_id, file_id=file_id, store=blob_store)
    async with SessionLocal() as session:
        session.add(
            VaultConfig(
                workspace_id=workspace_id,
                config_section="business",
                completion_score=80,
                config_data={"industry": "retail", "goals": [], "kpi": {"cvr": 3}},
            )
        )
        session.add(
            AbTest(
                id="ab1",
                workspace_id=workspace_id,
                name="Checkout CTA",
                hypothesis="Green converts better",
                status="running",
                metrics_json={"uplift": 0.04},
            )
        )
        session.add(KnowledgeBaseEntry(id="kb1", workspace_id=workspace_id, title="Brand voice", content="y" * 600))
        await session.commit()

    async with SessionLocal() as session:
        assembled = await build_context(session, workspace_id, "p1", store=blob_store)

    text = assembled.text
    assert assembled.mode == "project"
    assert assembled.files_analyzed == 1
    assert text.startswith("PROJECT: p1\nWORKSPACE: Test workspace (n/a)")
    assert "## BUSINESS (completion 80%)" in text
    assert '- industry: "retail"' in text
    assert "goals" not in text
    assert "=== REAL 24-25.CSV ===" in text
    assert "Type: csv | CVR Data:" in text
    assert "other-project.txt" not in text
    assert "Checkout CTA [running]" in text
    assert "Hypothesis: Green converts better" in text
    assert "ANALYTICS EXPORTS" not in text
    assert "y" * 500 + "..." in text


def _file(name: str, file_type: str, section: str = "simple") -> VaultFile:
    return VaultFile(id=name, workspace_id="ws", file_name=name, file_type=file_type, config_section=section)


def test_score_file_rewards_metric_keywords() -> None:
    query = "What is yesterday's CVR?"
    assert score_file(_file("REAL 24-25.csv", "text/csv"), query) == 10 + 8 + 15 + 3
    assert score_file(_file("cvr-by-channel.csv", "text/csv"), query) == 10 + 3
    assert score_file(_file("daily.json", "application/json"), query) == 8 + 2
    assert score_file(_file("notes.txt", "text/plain"), query) == 0
    assert score_file(_file("visits.txt", "text/plain", "behavioral"), "traffic last week") == 6


def test_rank_files_applies_floor_and_limit() -> None:
    files = [
        _file("notes.txt", "text/plain"),
        _file("daily.json", "application/json"),
        _file("REAL 24-25.csv", "text/csv"),
        _file("cvr-by-channel.csv", "text/csv"),
    ]
    ranked = rank_files(files, "What is yesterday's CVR?", limit=2, min_score=5)
    assert [f.file_name for f in ranked] == ["REAL 24-25.csv", "cvr-by-channel.csv"]
    assert rank_files(files, "hello", limit=5, min_score=5) == []


async def test_project_context_prioritises_cvr_export(blob_store) -> None:
    workspace_id = await create_workspace()
    rows = "\n".join(f"{day:02d}/08/2025,{day / 10:.1f}" for day in range(11, 20))
    export_id = await add_file(
        blob_store,
        workspace_id=workspace_id,
        file_name="REAL 24-25.csv",
        file_type="text/csv",
        content=f"date,cvr\n{rows}".encode(),
        project_id="p1",
    )
    await add_file(
        blob_store,
        workspace_id=workspace_id,
        file_name="notes.txt",
        file_type="text/plain",
        content=b"team notes",
        project_id="p1",
    )

    async with SessionLocal() as session:
        assembled = await build_context(
            session, workspace_id, "p1", query="What was the CVR yesterday?", store=blob_store
        )

    text = assembled.text
    assert assembled.files_analyzed == 1
    assert text.index("RELEVANT FILES:") < text.index("=== REAL 24-25.CSV ===")
    assert "RECENT DATA (last 7 rows):" in text
    assert "19/08/2025: CVR=1.9%" in text
    assert "13/08/2025: CVR=1.3%" in text
    assert "12/08/2025: CVR" not in text
    assert "OTHER FILES AVAILABLE:\n- notes.txt (simple)" in text

    # The export had no parsed row yet, so it was parsed while building the context.
    async with SessionLocal() as session:
        row = (
            await session.execute(select(ParsedContent).where(ParsedContent.file_id == export_id))
        ).scalar_one()
    assert row.parsing_status == "success"


async def test_project_context_respects_token_budget(blob_store, monkeypatch) -> None:
    monkeypatch.setenv("CONTEXT_TOKEN_BUDGET", "2000")
    monkeypatch.setenv("CONTEXT_RESERVED_TOKENS", "50")
    monkeypatch.setenv("CONTEXT_SUMMARY_ABOVE_TOKENS", "500")
    monkeypatch.setenv("CONTEXT_SUMMARY_COST_TOKENS", "100")
    get_settings.cache_clear()
    workspace_id = await create_workspace()
    base = datetime.now(timezone.utc) - timedelta(hours=1)
    # Newest first within a section, so big, small, huge is the ranking order.
    for offset, name, content in (
        (3, "big.txt", b"word " * 800),
        (2, "small.txt", b"hello world"),
        (1, "huge.txt", b"word " * 8000),
    ):
        await add_file(
            blob_store,
            workspace_id=workspace_id,
            file_name=name,
            file_type="text/plain",
            content=content,
            project_id="p1",
            created_at=base + timedelta(minutes=offset),
        )

    async with SessionLocal() as session:
        assembled = await build_context(
            session, workspace_id, "p1", query="show me the detail", store=blob_store
        )

    text = assembled.text
    assert assembled.files_analyzed == 2
    # 1000 tokens is over the summary threshold: described, not previewed.
    assert "=== BIG.TXT ===\nType: text | Text file" in text
    assert "Preview: hello world" in text
    assert text.count("Preview:") == 1
    # 10000 tokens never fits the remaining budget.
    assert "=== HUGE.TXT ===" not in text
    assert "- huge.txt (simple)" in text
