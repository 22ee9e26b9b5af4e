"""Background tasks: the scrape run and the report jobs."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Optional, Sequence
from uuid import uuid4

import redis.asyncio as redis

from vendor_tracker.config import settings
from vendor_tracker import metrics
from vendor_tracker.db.repository import VendorStore
from vendor_tracker.reports.backfill import BackfillScheduler, BackfillSummary
from vendor_tracker.reports.boundary import BoundaryProber, BoundaryResult
from vendor_tracker.reports.auth import TokenManager
from vendor_tracker.reports.client import ReportJobClient
from vendor_tracker.reports.sync import ReportSync, SyncResult
from vendor_tracker.reports.windows import Granularity
from vendor_tracker.scrape.browser_session import BrowserSession
from vendor_tracker.scrape.worker import ScrapeRunSummary, ScrapeWorker
from vendor_tracker.worker.run_lock import RunLock, keep_lock_alive

logger = logging.getLogger(__name__)


class RunLocked(Exception):
    """Another run of the same job holds the lock."""


class TaskRunner:
    """
    Entry points shared by the scheduler and the CLI scripts.

    Each job runs under its own Redis lock (when enabled) so a scheduled run
    never overlaps a manual one. The scraper and the report jobs use separate
    locks and may run side by side.
    """

    def __init__(self, store: Optional[VendorStore] = None):
        self._store = store

    @property
    def store(self) -> VendorStore:
        if self._store is None:
            self._store = VendorStore()
        return self._store

    @asynccontextmanager
    async def _exclusive(self, name: str) -> AsyncIterator[None]:
        """Hold the named run lock, refreshed in the background, for the duration of the block."""
        if not settings.run_lock_enabled:
            yield
            return

        run_id = uuid4().hex
        lock = RunLock(name)
        try:
            token = await lock.acquire(run_id)
        except redis.RedisError as e:
            await lock.close()
            raise RunLocked(f"Cannot reach Redis for the {name} lock: {e}") from e
        if token is None:
            await lock.close()
            raise RunLocked(f"A {name} run is already in progress")

        heartbeat = asyncio.create_task(
            keep_lock_alive(lock, run_id, token, interval=max(30, lock.ttl_seconds // 4))
        )
        try:
            yield
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat
            await lock.release(run_id, token)
            await lock.close()

    @asynccontextmanager
    async def _report_client(self) -> AsyncIterator[ReportJobClient]:
        tokens = TokenManager(self.store)
        client = ReportJobClient(tokens)
        try:
            yield client
        finally:
            await client.close()
            await tokens.close()

    async def run_scrape(self) -> Optional[ScrapeRunSummary]:
        """Scrape every tracked item once."""
        try:
            async with self._exclusive("scrape"):
                items = await self.store.list_tracked_items()
                logger.info(f"Starting scrape run for {len(items)} items")

                worker = ScrapeWorker(BrowserSession(), self.store)
                summary = await worker.run([item.asin for item in items])
        except RunLocked as e:
            logger.warning(f"Skipping scrape run: {e}")
            return None
        except Exception:
            metrics.record_scheduler_run("scrape", success=False)
            logger.error("Scrape run failed", exc_info=True)
            raise

        metrics.record_scheduler_run("scrape", success=not summary.aborted)
        return summary

    async def run_report_sync(self, report_types: Optional[Sequence[str]] = None) -> list[SyncResult]:
        """Pull the most recent weekly and real-time reports."""
        try:
            async with self._exclusive("reports"):
                async with self._report_client() as client:
                    results = await ReportSync(client, self.store).run(report_types)
        except RunLocked as e:
            logger.warning(f"Skipping report sync: {e}")
            return []
        except Exception:
            metrics.record_scheduler_run("report_sync", success=False)
            logger.error("Report sync failed", exc_info=True)
            raise

        metrics.record_scheduler_run("report_sync", success=all(r.success for r in results))
        return results

    async def run_backfill(
        self,
        granularity: Granularity,
        report_types: Optional[Sequence[str]] = None,
        request_delay: Optional[float] = None,
    ) -> Optional[BackfillSummary]:
        """Fill in missing historical windows. Safe to rerun after an interruption."""
        job = f"backfill_{granularity.value.lower()}"
        try:
            async with self._exclusive("reports"):
                async with self._report_client() as client:
                    scheduler = BackfillScheduler(
                        client,
                        self.store,
                        report_types=report_types,
                        request_delay=request_delay,
                    )
                    summary = await scheduler.run(granularity)
        except RunLocked as e:
            logger.warning(f"Skipping {job}: {e}")
            return None
        except Exception:
            metrics.record_scheduler_run(job, success=False)
            logger.error(f"{job} failed", exc_info=True)
            raise

        metrics.record_scheduler_run(job, success=True)
        return summary

    async def run_boundary_probe(
        self,
        report_type: str,
        granularity: Granularity,
        offsets_months: Optional[Sequence[int]] = None,
    ) -> Optional[BoundaryResult]:
        """Find the oldest window the provider still serves for one report type."""
        try:
            async with self._exclusive("reports"):
                async with self._report_client() as client:
                    prober = BoundaryProber(client, offsets_months=offsets_months)
                    result = await prober.probe(report_type, granularity)
        except RunLocked as e:
            logger.warning(f"Skipping boundary probe: {e}")
            return None
        except Exception:
            metrics.record_scheduler_run("boundary_probe", success=False)
            logger.error("Boundary probe failed", exc_info=True)
            raise

        metrics.record_scheduler_run("boundary_probe", success=True)
        return result


task_runner = TaskRunner()
