from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultrag.core.config import get_settings
from vaultrag.core.errors import DatabaseError, FileNotFoundInWorkspaceError, FileTimeoutError
from vaultrag.domain.parsed import ContentType, ParsedFile
from vaultrag.ingestion.file_parser import parse_content
from vaultrag.persistence.db import SessionLocal
from vaultrag.persistence.repos import files as files_repo
from vaultrag.persistence.repos import parsed_content as parsed_repo
from vaultrag.services.audit import ACTION_ERROR, ACTION_FILE_PARSED, record_interaction
from vaultrag.services.storage import BlobStore, download_bytes, get_blob_store


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParseOutcome:
    file_id: str
    success: bool
    token_count: int = 0
    content_type: str | None = None
    error: str | None = None
    error_type: str | None = None

    def as_response(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "token_count": self.token_count, "content_type": self.content_type}
        return {"success": False, "error": self.error}


@dataclass
class ReparseReport:
    processed_count: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    errors: list[str] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def declared_content_type(file_type: str | None) -> ContentType:
    # Placeholder tag for the processing row, before the parser decides.
    declared = file_type or ""
    if declared.startswith("image/"):
        return "image"
    if declared == "text/csv":
        return "csv"
    if declared == "application/json":
        return "json"
    if declared.startswith("text/"):
        return "text"
    return "other"


async def _download_and_parse(
    store: BlobStore, *, file_name: str, file_type: str, storage_path: str, timeout_s: float
) -> ParsedFile:
    # One budget covers the download and the parse so a slow file cannot stall a batch.
    async def run() -> ParsedFile:
        raw = await download_bytes(store, storage_path, timeout_s=timeout_s)
        return await asyncio.to_thread(parse_content, file_name, file_type, storage_path, raw)

    try:
        return await asyncio.wait_for(run(), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise FileTimeoutError(f"Timed out parsing {file_name}") from exc


async def parse_vault_file(
    session: AsyncSession,
    *,
    workspace_id: str,
    file_id: str,
    store: BlobStore | None = None,
    user_id: str | None = None,
    request_id: str | None = None,
) -> ParseOutcome:
    """Parse one uploaded file and upsert its ParsedContent row.

    Failures are recorded on the row (status ``error``) and returned rather than
    raised; only a missing file or a broken database propagate.
    """
    settings = get_settings()
    file = await files_repo.get_file(session, workspace_id, file_id)
    if file is None:
        raise FileNotFoundInWorkspaceError(f"File not found: {file_id}")
    # Plain values survive the rollback below, which expires ORM state.
    file_name, file_type, storage_path = file.file_name, file.file_type, file.storage_path
    file_id = file.id

    try:
        await parsed_repo.upsert_parsed_content(
            session,
            file_id=file_id,
            workspace_id=workspace_id,
            content_type=declared_content_type(file_type),
            parsing_status="processing",
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise DatabaseError("Failed to mark file as processing") from exc

    try:
        parsed = await _download_and_parse(
            store or get_blob_store(),
            file_name=file_name,
            file_type=file_type,
            storage_path=storage_path,
            timeout_s=settings.file_download_timeout_s,
        )
        await parsed_repo.upsert_parsed_content(
            session,
            file_id=file_id,
            workspace_id=workspace_id,
            content_type=parsed.content_type,
            parsing_status="success",
            structured_data=parsed.structured_data(),
            columns_metadata=parsed.metadata,
            summary=parsed.summary,
            token_count=parsed.token_count,
            parsed_at=_utc_now(),
        )
        await files_repo.mark_processed(session, file_id)
        await record_interaction(
            session=session,
            workspace_id=workspace_id,
            user_id=user_id,
            action=ACTION_FILE_PARSED,
            resource_type="vault_file",
            resource_id=file_id,
            request_id=request_id,
            metadata={"content_type": parsed.content_type, "token_count": parsed.token_count},
        )
        await session.commit()
    except Exception as exc:  # noqa: BLE001 - any failure is recorded on the parsed row
        await session.rollback()
        return await _record_failure(
            session,
            workspace_id=workspace_id,
            file_id=file_id,
            exc=exc,
            user_id=user_id,
            request_id=request_id,
        )

    logger.info(
        "file_parsed workspace_id=%s file_id=%s content_type=%s tokens=%s",
        workspace_id,
        file_id,
        parsed.content_type,
        parsed.token_count,
    )
    return ParseOutcome(
        file_id=file_id,
        success=True,
        token_count=parsed.token_count,
        content_type=parsed.content_type,
    )


async def _record_failure(
    session: AsyncSession,
    *,
    workspace_id: str,
    file_id: str,
    exc: Exception,
    user_id: str | None,
    request_id: str | None,
) -> ParseOutcome:
    # The processed flag stays false so the file is picked up by the next bulk re-parse.
    message = str(exc) or type(exc).__name__
    error_type = "FileTimeoutError" if isinstance(exc, FileTimeoutError) else "ParseError"
    logger.warning(
        "file_parse_failed workspace_id=%s file_id=%s error_type=%s",
        workspace_id,
        file_id,
        error_type,
        exc_info=exc,
    )
    try:
        await parsed_repo.upsert_parsed_content(
            session,
            file_id=file_id,
            workspace_id=workspace_id,
            content_type="error",
            parsing_status="error",
            parsing_error=message,
        )
        await record_interaction(
            session=session,
            workspace_id=workspace_id,
            user_id=user_id,
            action=ACTION_ERROR,
            resource_type="vault_file",
            resource_id=file_id,
            request_id=request_id,
            metadata={"error_type": error_type, "error_message": message},
        )
        await session.commit()
    except SQLAlchemyError as db_exc:
        await session.rollback()
        raise DatabaseError("Failed to record parse failure") from db_exc
    return ParseOutcome(file_id=file_id, success=False, error=message, error_type=error_type)


async def reparse_unprocessed(
    workspace_id: str,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    store: BlobStore | None = None,
    batch_size: int | None = None,
    delay_s: float | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ReparseReport:
    """Parse every unprocessed file of a workspace in small concurrent batches.

    Files already parsed successfully are only flagged processed; files still
    marked ``processing`` are skipped.
    """
    settings = get_settings()
    factory = session_factory or SessionLocal
    size = max(1, batch_size if batch_size is not None else settings.parse_batch_size)
    pause = delay_s if delay_s is not None else settings.parse_batch_delay_s
    blob_store = store or get_blob_store()

    async with factory() as session:
        pending = [(f.id, f.file_name) for f in await files_repo.list_unprocessed_files(session, workspace_id)]

    report = ReparseReport(processed_count=len(pending))
    if not pending:
        return report

    async def handle(file_id: str, file_name: str) -> None:
        # Each concurrent parse owns its session.
        async with factory() as session:
            try:
                existing = await parsed_repo.get_parsed_content(session, file_id)
                if existing is not None and existing.parsing_status == "success":
                    await files_repo.mark_processed(session, file_id)
                    await session.commit()
                    report.success_count += 1
                    return
                if existing is not None and existing.parsing_status == "processing":
                    report.skipped_count += 1
                    return
                outcome = await parse_vault_file(
                    session, workspace_id=workspace_id, file_id=file_id, store=blob_store
                )
            except Exception as exc:  # noqa: BLE001 - one file never aborts the batch
                logger.warning("reparse_file_failed file_id=%s", file_id, exc_info=exc)
                report.errors.append(f"{file_name}: {exc}")
                report.error_count += 1
                return
            if outcome.success:
                report.success_count += 1
            else:
                report.errors.append(f"{file_name}: {outcome.error}")
                report.error_count += 1

    for start in range(0, len(pending), size):
        batch = pending[start : start + size]
        await asyncio.gather(*(handle(file_id, file_name) for file_id, file_name in batch))
        if start + size < len(pending):
            await sleep(pause)

    logger.info(
        "reparse_completed workspace_id=%s processed=%s success=%s errors=%s skipped=%s",
        workspace_id,
        report.processed_count,
        report.success_count,
        report.error_count,
        report.skipped_count,
    )
    return report
