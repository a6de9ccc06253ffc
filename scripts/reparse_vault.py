from __future__ import annotations

import argparse
import asyncio

from vaultrag.core.logging import configure_logging
from vaultrag.services.parsing import reparse_unprocessed


async def reparse(workspace_id: str, batch_size: int | None, delay_s: float | None) -> None:
    report = await reparse_unprocessed(workspace_id, batch_size=batch_size, delay_s=delay_s)
    print(f"processed={report.processed_count}")
    print(f"success={report.success_count}")
    print(f"errors={report.error_count}")
    print(f"skipped={report.skipped_count}")
    for error in report.errors:
        print(f"error={error}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Parse every unprocessed vault file of a workspace")
    parser.add_argument("workspace_id")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--delay", type=float, default=None)
    args = parser.parse_args()
    configure_logging()
    asyncio.run(reparse(args.workspace_id, args.batch_size, args.delay))


if __name__ == "__main__":
    main()
