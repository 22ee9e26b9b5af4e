#!/usr/bin/env python3
"""Sync the most recent weekly and real-time vendor reports."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vendor_tracker.logging_config import setup_logging
from vendor_tracker.reports.kinds import REPORT_KINDS
from vendor_tracker.worker.tasks import TaskRunner


async def main(report_types: list[str] | None) -> int:
    results = await TaskRunner().run_report_sync(report_types)
    if not results:
        print("Report sync skipped (another report job holds the lock)")
        return 1

    for result in results:
        status = f"{result.rows} rows" if result.success else f"FAILED: {result.error}"
        print(f"  {result.report_type}: {status}")
    return 0 if all(r.success for r in results) else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync recent vendor reports")
    parser.add_argument(
        "--report-type",
        action="append",
        choices=sorted(REPORT_KINDS),
        help="Report type to sync (repeatable, default: all)",
    )
    args = parser.parse_args()

    setup_logging(job="report_sync")
    sys.exit(asyncio.run(main(args.report_type)))
