#!/usr/bin/env python3
"""Run year-end leave settlement for one organization from the command line.

Settles the year before --as-of (default: today): archives each user's leave
history, forfeits unused comp-off and writes the new opening balances.

Usage:
    python scripts/run_year_end.py --org 5f0c...                   # inside the January window
    python scripts/run_year_end.py --org 5f0c... --force           # any time of year
    python scripts/run_year_end.py --org 5f0c... --retry-failed    # only users not yet archived
    python scripts/run_year_end.py --org 5f0c... --json

Exit codes:
    0 = every user settled
    1 = settlement ran but some users failed (re-run with --retry-failed)
    2 = settlement refused (already settled, outside window, unknown actor)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import leavedesk.models  # noqa: E402,F401
from leavedesk.common.constants import SettlementStatus  # noqa: E402
from leavedesk.common.exceptions import AppException  # noqa: E402
from leavedesk.common.logging_config import setup_logging  # noqa: E402
from leavedesk.config import settings  # noqa: E402
from leavedesk.database import engine, transaction  # noqa: E402
from leavedesk.settlement.schemas import SettlementReport  # noqa: E402
from leavedesk.settlement.service import SettlementService  # noqa: E402
from leavedesk.users.models import User  # noqa: E402

logger = logging.getLogger("run_year_end")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="LeaveDesk year-end settlement")
    parser.add_argument("--org", required=True, type=uuid.UUID, help="Organization id")
    parser.add_argument(
        "--actor", type=uuid.UUID, default=None,
        help="User id recorded as the settling admin (must hold settlement rights)",
    )
    parser.add_argument("--force", action="store_true", help="Ignore the January window")
    parser.add_argument(
        "--retry-failed", action="store_true",
        help="Settle only users without an archive row for the year",
    )
    parser.add_argument(
        "--as-of", type=date.fromisoformat, default=None,
        help="Pretend today is this date (YYYY-MM-DD); requires --force",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    return parser.parse_args(argv)


def print_report(report: SettlementReport) -> None:
    print(f"Organization {report.organization_id}, year {report.year}: {report.status.value}")
    print(f"  processed={report.processed} succeeded={report.succeeded} failed={report.failed}")
    print(f"  settings marked processed: {report.marked_processed}")
    for result in report.results:
        if result.success:
            print(
                f"  OK   {result.user_id}  casual={result.new_balance_casual} "
                f"medical={result.new_balance_medical} archived={result.leaves_archived}"
            )
        else:
            print(f"  FAIL {result.user_id}  {result.reason}")


async def run(args: argparse.Namespace) -> int:
    try:
        async with transaction() as session:
            actor = None
            if args.actor is not None:
                actor = await session.get(User, args.actor)
                if actor is None:
                    logger.error("Actor %s not found", args.actor)
                    return 2
            report = await SettlementService.run_settlement(
                session,
                args.org,
                actor,
                force=args.force,
                retry_failed=args.retry_failed,
                today=args.as_of if args.force else None,
            )
    except AppException as exc:
        logger.error("%s: %s %s", exc.title, exc.detail, exc.errors or "")
        return 2

    if args.json:
        print(json.dumps(report.model_dump(mode="json"), indent=2))
    else:
        print_report(report)
    return 0 if report.status == SettlementStatus.COMPLETED else 1


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(settings.LOG_LEVEL)
    try:
        return await run(args)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
