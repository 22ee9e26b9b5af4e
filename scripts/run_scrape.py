#!/usr/bin/env python3
"""
Run one scrape pass over every tracked item, outside the scheduler.

Takes the same Redis run lock as the scheduled job, so it refuses to start
while another scrape is in progress.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vendor_tracker.logging_config import setup_logging
from vendor_tracker.worker.tasks import TaskRunner


async def main() -> int:
    summary = await TaskRunner().run_scrape()
    if summary is None:
        print("Scrape skipped (another run holds the lock)")
        return 1

    print(
        f"Processed {summary.processed} items: {summary.observations} observations, "
        f"{summary.no_data} no data, {summary.errors} errors, {summary.restarts} restarts"
    )
    return 1 if summary.aborted else 0


if __name__ == "__main__":
    setup_logging(job="scrape")
    sys.exit(asyncio.run(main()))
