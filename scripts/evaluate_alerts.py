from __future__ import annotations

import argparse
import asyncio

from vaultrag.core.logging import configure_logging
from vaultrag.persistence.db import SessionLocal
from vaultrag.services.alerts import AlertEvaluator, evaluate_all_workspaces


async def evaluate(workspace_id: str | None) -> None:
    async with SessionLocal() as session:
        if workspace_id:
            reports = [await AlertEvaluator().evaluate(session, workspace_id)]
        else:
            reports = await evaluate_all_workspaces(session)
    for report in reports:
        print(
            f"workspace_id={report.workspace_id} rules={report.rules_evaluated} "
            f"raised={','.join(report.alerts_raised) or '-'} failures={len(report.failures)}"
        )


def main() -> None:
    # One-off alert sweep; the worker cron runs the same evaluation on a schedule.
    parser = argparse.ArgumentParser(description="Evaluate alert rules")
    parser.add_argument("--workspace-id", default=None)
    args = parser.parse_args()
    configure_logging()
    asyncio.run(evaluate(args.workspace_id))


if __name__ == "__main__":
    main()
