#!/usr/bin/env python3
"""
Find how far back Amazon still serves data for a report type.

Requests (but never downloads) reports at increasing lookback offsets and
stops at the first failure after a success.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vendor_tracker.logging_config import setup_logging
from vendor_tracker.reports.kinds import HISTORICAL_REPORT_TYPES, SALES
from vendor_tracker.reports.windows import Granularity
from vendor_tracker.worker.tasks import TaskRunner


async def main(report_type: str, granularity: Granularity, offsets: list[int] | None) -> int:
    result = await TaskRunner().run_boundary_probe(report_type, granularity, offsets)
    if result is None:
        print("Probe skipped (another report job holds the lock)")
        return 1

    for point in result.points:
        window = point.window
        print(f"  {point.months_back:>3} months ({window.start_date} to {window.end_date}): {point.status}")
    print(f"\n{report_type}: {result.describe()}")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Probe the oldest available report window")
    parser.add_argument("--report-type", choices=HISTORICAL_REPORT_TYPES, default=SALES)
    parser.add_argument(
        "--granularity",
        choices=[g.value.lower() for g in Granularity],
        default="week",
    )
    parser.add_argument(
        "--offsets",
        type=int,
        nargs="+",
        default=None,
        help="Lookback offsets in months (default: 1 3 6 12 18 24 30 36)",
    )
    args = parser.parse_args()

    setup_logging(job="boundary_probe")
    sys.exit(asyncio.run(main(args.report_type, Granularity(args.granularity.upper()), args.offsets)))
