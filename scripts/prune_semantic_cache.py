from __future__ import annotations

import argparse
import asyncio

from vaultrag.core.logging import configure_logging
from vaultrag.persistence.db import SessionLocal
from vaultrag.services.semantic_cache import prune_semantic_cache


async def prune(retention_days: int | None) -> None:
    async with SessionLocal() as session:
        deleted = await prune_semantic_cache(session, retention_days=retention_days)
        print(f"pruned_semantic_cache_entries={deleted}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Delete semantic cache entries past retention")
    parser.add_argument("--retention-days", type=int, default=None)
    args = parser.parse_args()
    configure_logging()
    asyncio.run(prune(args.retention_days))


if __name__ == "__main__":
    main()
