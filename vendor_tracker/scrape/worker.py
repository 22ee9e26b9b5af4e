"""Sequential scrape loop with browser recovery."""

import asyncio
import logging
import random
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from vendor_tracker.config import settings
from vendor_tracker.metrics import record_page_recovery, record_scrape_outcome
from vendor_tracker.scrape.base import (
    ClassificationAmbiguousError,
    ObservationData,
    OutcomeKind,
    ScrapeOutcome,
)
from vendor_tracker.scrape.browser_session import BrowserSession
from vendor_tracker.scrape.extractor import PageExtractor
from vendor_tracker.utils.retry import (
    OperationTimeoutError,
    RetryPolicy,
    errors_of,
    fixed_backoff,
    with_timeout,
)

logger = logging.getLogger(__name__)

PAGE_RECOVERY_TIMEOUT_SECONDS = 20
LAUNCH_TIMEOUT_SECONDS = 90


@dataclass
class ScrapeRunSummary:
    processed: int = 0
    observations: int = 0
    no_data: int = 0
    errors: int = 0
    restarts: int = 0
    aborted: bool = False

    def count(self, outcome: ScrapeOutcome) -> None:
        self.processed += 1
        if outcome.kind == OutcomeKind.OBSERVATION:
            self.observations += 1
        elif outcome.kind == OutcomeKind.NO_DATA:
            self.no_data += 1
        else:
            self.errors += 1


class ScrapeWorker:
    """
    Scrapes items one at a time on a single browser session.

    Before each item the session is restarted when it has served
    `restart_every` items, after `max_consecutive_failures` failed attempts in
    a row, or when no attempt has completed for `stall_timeout` seconds. Each
    attempt races `item_timeout`; a timed-out attempt gets a fresh page, and a
    page that cannot be recreated gets a full restart. A background watchdog
    cancels an attempt that outlives the stall timeout.
    """

    def __init__(
        self,
        session: BrowserSession,
        store,
        extractor: Optional[PageExtractor] = None,
        *,
        item_timeout: Optional[float] = None,
        restart_every: Optional[int] = None,
        max_consecutive_failures: Optional[int] = None,
        stall_timeout: Optional[float] = None,
        watchdog_interval: Optional[float] = None,
        cookie_checkpoint_probability: Optional[float] = None,
        min_item_delay: Optional[float] = None,
        max_item_delay: Optional[float] = None,
        cooldown_every: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
        max_restart_attempts: Optional[int] = None,
        restart_retry_delay: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.session = session
        self.store = store
        self.extractor = extractor or PageExtractor()

        def pick(value, default):
            return default if value is None else value

        self.item_timeout = pick(item_timeout, settings.scrape_item_timeout_seconds)
        self.restart_every = pick(restart_every, settings.scrape_restart_every_items)
        self.max_consecutive_failures = pick(
            max_consecutive_failures, settings.scrape_max_consecutive_failures
        )
        self.stall_timeout = pick(stall_timeout, settings.scrape_stall_timeout_seconds)
        self.watchdog_interval = pick(watchdog_interval, settings.scrape_watchdog_interval_seconds)
        self.cookie_checkpoint_probability = pick(
            cookie_checkpoint_probability, settings.scrape_cookie_checkpoint_probability
        )
        self.min_item_delay = pick(min_item_delay, settings.scrape_min_item_delay_seconds)
        self.max_item_delay = pick(max_item_delay, settings.scrape_max_item_delay_seconds)
        self.cooldown_every = pick(cooldown_every, settings.scrape_cooldown_every_items)
        self.cooldown_seconds = pick(cooldown_seconds, settings.scrape_cooldown_seconds)

        self.restart_policy = RetryPolicy(
            name="browser_restart",
            max_attempts=pick(max_restart_attempts, settings.scrape_max_restart_attempts),
            backoff=fixed_backoff(pick(restart_retry_delay, settings.scrape_restart_retry_delay_seconds)),
            is_retryable=errors_of(Exception),
        )

        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()

        self.consecutive_failures = 0
        self.items_since_restart = 0
        self.last_progress = clock()
        self._current_attempt: Optional[asyncio.Future] = None
        self._stall_detected = False
        self._watchdog_cancelled = False

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def run(self, item_ids: Sequence[str]) -> ScrapeRunSummary:
        """Scrape every item in order. Returns counts; never raises for item failures."""
        summary = ScrapeRunSummary()
        if not item_ids:
            logger.info("No items to scrape")
            return summary

        if not await self._relaunch(None):
            logger.error("Could not launch browser, aborting scrape run")
            summary.aborted = True
            await self.session.close()
            return summary

        watchdog = asyncio.create_task(self._watchdog())
        try:
            for index, item_id in enumerate(item_ids):
                reason = self._restart_reason()
                if reason:
                    if not await self._relaunch(reason):
                        logger.error(f"Browser restart failed repeatedly, aborting after {index} items")
                        summary.aborted = True
                        break
                    summary.restarts += 1

                outcome = await self.scrape_item(item_id)
                summary.count(outcome)

                if outcome.observation is not None:
                    await self._store(outcome.observation)

                if outcome.timed_out and not self._stall_detected:
                    if not await self._recover_page():
                        if not await self._relaunch("page_recovery_failed"):
                            summary.aborted = True
                            break
                        summary.restarts += 1

                await self._checkpoint_maybe()

                if index < len(item_ids) - 1:
                    await self._pace(index + 1)
        finally:
            watchdog.cancel()
            with suppress(asyncio.CancelledError):
                await watchdog
            await self.session.close()

        logger.info(
            f"Scrape run finished: {summary.processed} processed, "
            f"{summary.observations} observations, {summary.no_data} no data, "
            f"{summary.errors} errors, {summary.restarts} restarts"
            f"{' (aborted)' if summary.aborted else ''}"
        )
        return summary

    async def process_item(self, item_id: str) -> Optional[ObservationData]:
        """Scrape one item on the current page. Never raises for scrape failures."""
        outcome = await self.scrape_item(item_id)
        return outcome.observation

    async def scrape_item(self, item_id: str) -> ScrapeOutcome:
        """Run one time-boxed attempt and classify it."""
        started = self.clock()
        self._watchdog_cancelled = False
        attempt = asyncio.ensure_future(
            with_timeout(self._scrape(item_id), self.item_timeout, f"scrape {item_id}")
        )
        self._current_attempt = attempt

        try:
            observation = await attempt
            outcome = ScrapeOutcome(OutcomeKind.OBSERVATION, item_id, observation=observation)
        except asyncio.CancelledError:
            if not self._watchdog_cancelled:
                raise
            error = OperationTimeoutError(f"scrape {item_id} (stalled)", self.stall_timeout)
            outcome = ScrapeOutcome(OutcomeKind.ERROR, item_id, error=error, timed_out=True)
        except ClassificationAmbiguousError as e:
            logger.warning(f"{item_id}: no data ({e})")
            outcome = ScrapeOutcome(OutcomeKind.NO_DATA, item_id, error=e)
        except OperationTimeoutError as e:
            logger.warning(f"{item_id}: {e}")
            outcome = ScrapeOutcome(OutcomeKind.ERROR, item_id, error=e, timed_out=True)
        except Exception as e:
            logger.error(f"{item_id}: scrape failed: {type(e).__name__}: {e}")
            outcome = ScrapeOutcome(OutcomeKind.ERROR, item_id, error=e)
        finally:
            self._current_attempt = None

        outcome.duration = self.clock() - started
        self.last_progress = self.clock()
        self.items_since_restart += 1
        if outcome.failed:
            self.consecutive_failures += 1
        else:
            self.consecutive_failures = 0

        record_scrape_outcome(outcome.kind.value, outcome.duration)
        return outcome

    async def _scrape(self, item_id: str) -> ObservationData:
        page = self.session.page
        status = await self.extractor.navigate(page, item_id)
        return await self.extractor.extract(page, item_id, status)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def _restart_reason(self) -> Optional[str]:
        if self._stall_detected or self.clock() - self.last_progress >= self.stall_timeout:
            return "stall"
        if self.consecutive_failures >= self.max_consecutive_failures:
            return "consecutive_failures"
        if self.items_since_restart >= self.restart_every:
            return "scheduled"
        return None

    async def _relaunch(self, reason: Optional[str]) -> bool:
        """Launch (reason None) or restart the browser, retrying per the restart policy."""
        attempt = 0
        while True:
            attempt += 1
            try:
                if reason is None:
                    await with_timeout(self.session.launch(), LAUNCH_TIMEOUT_SECONDS, "browser launch")
                else:
                    await with_timeout(self.session.restart(reason), LAUNCH_TIMEOUT_SECONDS, "browser restart")
                break
            except Exception as e:
                if not (self.restart_policy.is_retryable(e) and self.restart_policy.allows_retry(attempt)):
                    logger.error(f"Browser {'launch' if reason is None else 'restart'} failed: {e}")
                    return False
                delay = self.restart_policy.delay_for(attempt)
                logger.warning(
                    f"Browser launch attempt {attempt}/{self.restart_policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.0f}s"
                )
                await self.sleep(delay)

        self.consecutive_failures = 0
        self.items_since_restart = 0
        self.last_progress = self.clock()
        self._stall_detected = False
        return True

    async def _recover_page(self) -> bool:
        try:
            await with_timeout(self.session.recreate_page(), PAGE_RECOVERY_TIMEOUT_SECONDS, "page recovery")
        except Exception as e:
            logger.warning(f"Page recovery failed: {e}")
            record_page_recovery(False)
            return False
        logger.info("Recovered with a fresh page")
        record_page_recovery(True)
        return True

    async def _watchdog(self) -> None:
        while True:
            await asyncio.sleep(self.watchdog_interval)
            attempt = self._current_attempt
            if attempt is None or attempt.done():
                continue
            idle = self.clock() - self.last_progress
            if idle > self.stall_timeout:
                logger.error(f"Watchdog: no progress for {idle:.0f}s, cancelling current attempt")
                self._stall_detected = True
                self._watchdog_cancelled = True
                attempt.cancel()

    # ------------------------------------------------------------------
    # Side work between items
    # ------------------------------------------------------------------

    async def _store(self, observation: ObservationData) -> None:
        try:
            await self.store.append_observation(observation)
        except Exception as e:
            logger.error(f"{observation.item_id}: failed to store observation: {e}")

    async def _checkpoint_maybe(self) -> None:
        if self.rng.random() < self.cookie_checkpoint_probability:
            await self.session.checkpoint_cookies()

    async def _pace(self, done: int) -> None:
        delay = self.rng.uniform(self.min_item_delay, self.max_item_delay)
        if self.cooldown_every and done % self.cooldown_every == 0:
            delay += self.cooldown_seconds
        await self.sleep(delay)
