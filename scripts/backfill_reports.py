#!/usr/bin/env python3
"""
Backfill up to three years of weekly or monthly vendor reports.

Windows already in the database are skipped, so the script can be stopped
and rerun at any time; it picks up with the first missing window.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vendor_tracker.logging_config import setup_logging
from vendor_tracker.reports.kinds import HISTORICAL_REPORT_TYPES
from vendor_tracker.reports.windows import Granularity
from vendor_tracker.worker.tasks import TaskRunner


async def main(granularity: Granularity, report_types: list[str] | None, delay: float | None) -> int:
    summary = await TaskRunner().run_backfill(granularity, report_types, request_delay=delay)
    if summary is None:
        print("Backfill skipped (another report job holds the lock)")
        return 1

    print(f"\n{'=' * 60}")
    print(f"BACKFILL SUMMARY ({granularity.value})")
    print(f"{'=' * 60}")
    print(f"  Fetched:   {summary.fetched}")
    print(f"  Empty:     {summary.empty}")
    print(f"  Skipped:   {summary.skipped}")
    print(f"  Abandoned: {summary.abandoned}")
    print(f"  Failed:    {summary.failed}")
    print(f"  Rows:      {summary.rows}")
    for window in summary.abandoned_windows:
        print(f"    abandoned: {window}")
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Backfill historical vendor reports")
    parser.add_argument(
        "--granularity",
        choices=[g.value.lower() for g in Granularity],
        default="week",
        help="Report period (default: week)",
    )
    parser.add_argument(
        "--report-type",
        action="append",
        choices=HISTORICAL_REPORT_TYPES,
        help="Report type to backfill (repeatable, default: all four)",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds between report requests (default: 90 weekly, 60 monthly)",
    )
    args = parser.parse_args()

    setup_logging(job="backfill")
    sys.exit(asyncio.run(main(Granularity(args.granularity.upper()), args.report_type, args.delay)))
