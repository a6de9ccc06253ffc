from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from pathlib import Path
from typing import Protocol

from vaultrag.core.config import get_settings
from vaultrag.core.errors import FileDownloadError, FileTimeoutError


logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    def read(self, storage_path: str) -> bytes:
        ...


class LocalBlobStore:
    """Filesystem-backed blob store rooted at a single directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, storage_path: str) -> Path:
        # Reject locators that climb out of the store root.
        candidate = (self.root / storage_path.lstrip("/")).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise FileDownloadError(f"Storage path escapes the vault root: {storage_path}")
        return candidate

    def read(self, storage_path: str) -> bytes:
        return self._resolve(storage_path).read_bytes()

    def write(self, storage_path: str, data: bytes) -> None:
        # Uploads happen outside the core; this is used by seeding scripts and tests.
        path = self._resolve(storage_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


@lru_cache
def get_blob_store() -> BlobStore:
    return LocalBlobStore(get_settings().vault_storage_dir)


async def download_bytes(store: BlobStore, storage_path: str, *, timeout_s: float) -> bytes:
    # Run blocking reads off the event loop and bound them by the per-file timeout.
    try:
        return await asyncio.wait_for(asyncio.to_thread(store.read, storage_path), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        logger.warning("blob_download_timeout storage_path=%s timeout_s=%s", storage_path, timeout_s)
        raise FileTimeoutError(f"Timed out downloading {storage_path}") from exc
    except FileDownloadError:
        raise
    except Exception as exc:  # noqa: BLE001 - any store failure is a download failure
        raise FileDownloadError(f"Failed to download file: {exc}") from exc
