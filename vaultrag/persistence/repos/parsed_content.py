from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from vaultrag.domain.models import ParsedContent


def _insert_for(session: AsyncSession):
    # Both supported dialects expose ON CONFLICT DO UPDATE with the same API.
    dialect = session.get_bind().dialect.name
    return sqlite_insert if dialect == "sqlite" else pg_insert


async def upsert_parsed_content(
    session: AsyncSession,
    *,
    file_id: str,
    workspace_id: str,
    content_type: str,
    parsing_status: str,
    structured_data: Any = None,
    columns_metadata: dict[str, Any] | None = None,
    summary: str | None = None,
    token_count: int = 0,
    parsing_error: str | None = None,
    parsed_at: datetime | None = None,
) -> ParsedContent:
    # Upsert keyed on file_id keeps exactly one row per file across re-parses.
    values = {
        "file_id": file_id,
        "workspace_id": workspace_id,
        "content_type": content_type,
        "parsing_status": parsing_status,
        "structured_data": structured_data if structured_data is not None else {},
        "columns_metadata": columns_metadata or {},
        "summary": summary,
        "token_count": token_count,
        "parsing_error": parsing_error,
        "parsed_at": parsed_at,
        "updated_at": datetime.now(timezone.utc),
    }
    insert = _insert_for(session)
    stmt = insert(ParsedContent).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[ParsedContent.file_id],
        set_={key: value for key, value in values.items() if key != "file_id"},
    )
    await session.execute(stmt)
    # Reload so an identity-mapped row reflects the values written by the upsert.
    result = await session.execute(
        select(ParsedContent)
        .where(ParsedContent.file_id == file_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def get_parsed_content(session: AsyncSession, file_id: str) -> ParsedContent | None:
    result = await session.execute(select(ParsedContent).where(ParsedContent.file_id == file_id))
    return result.scalar_one_or_none()


async def list_successful_for_files(
    session: AsyncSession, workspace_id: str, file_ids: list[str]
) -> dict[str, ParsedContent]:
    # Map file_id -> parsed row for files that finished parsing successfully.
    if not file_ids:
        return {}
    result = await session.execute(
        select(ParsedContent).where(
            ParsedContent.workspace_id == workspace_id,
            ParsedContent.file_id.in_(file_ids),
            ParsedContent.parsing_status == "success",
        )
    )
    return {row.file_id: row for row in result.scalars().all()}
