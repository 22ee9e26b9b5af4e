#!/usr/bin/env python3
"""
Show the state of the job run locks, and optionally clear a stale one.

A run killed with SIGKILL leaves its lock in Redis until the TTL expires;
--force-unlock clears it immediately.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vendor_tracker.worker.run_lock import RunLock

LOCK_NAMES = ["scrape", "reports"]


async def show(name: str) -> None:
    lock = RunLock(name)
    try:
        info = await lock.get_lock_info()
    finally:
        await lock.close()

    print(f"{name} ({lock.key})")
    if not info:
        print("  Lock: none")
        return
    print("  Lock: present")
    print(f"    run_id: {info.get('run_id')}")
    print(f"    started_at: {info.get('started_at')}")
    print(f"    ttl_seconds: {info.get('ttl_seconds')}")


async def main(force_unlock: str | None) -> int:
    if force_unlock:
        lock = RunLock(force_unlock)
        try:
            await lock.force_unlock()
        finally:
            await lock.close()
        print(f"Cleared {force_unlock} lock")

    print("Run Locks")
    print("=========")
    for name in LOCK_NAMES:
        await show(name)
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Inspect job run locks")
    parser.add_argument(
        "--force-unlock",
        choices=LOCK_NAMES,
        default=None,
        help="Delete the named lock before printing status",
    )
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.force_unlock)))
