"""Resumable historical backfill of vendor reports."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, Optional, Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError

from vendor_tracker.config import settings
from vendor_tracker.logging_config import get_logger
from vendor_tracker.metrics import record_backfill_window
from vendor_tracker.reports.auth import AuthRefreshError
from vendor_tracker.reports.client import (
    QuotaExceededError,
    ReportJobClient,
    ReportRequestError,
    ReportTimeoutError,
    TerminalJobError,
    UnknownReportStatusError,
)
from vendor_tracker.reports.kinds import HISTORICAL_REPORT_TYPES, get_report_kind
from vendor_tracker.reports.rows import build_report_rows
from vendor_tracker.reports.windows import Granularity, ReportWindow, generate_windows
from vendor_tracker.utils.retry import (
    OperationTimeoutError,
    RetryPolicy,
    errors_of,
    fixed_backoff,
    select_policy,
)

logger = logging.getLogger(__name__)


@dataclass
class BackfillSummary:
    granularity: Granularity
    fetched: int = 0
    empty: int = 0
    skipped: int = 0
    abandoned: int = 0
    failed: int = 0
    rows: int = 0
    abandoned_windows: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.fetched + self.empty + self.skipped + self.abandoned + self.failed


def backfill_policies(
    max_attempts: int,
    retry_backoff: float,
    quota_backoff: float,
) -> list[RetryPolicy]:
    """Quota throttling first, then everything else worth retrying."""
    return [
        RetryPolicy(
            name="quota",
            max_attempts=max_attempts,
            backoff=fixed_backoff(quota_backoff),
            is_retryable=errors_of(QuotaExceededError),
        ),
        RetryPolicy(
            name="transient",
            max_attempts=max_attempts,
            backoff=fixed_backoff(retry_backoff),
            is_retryable=errors_of(
                ReportRequestError,
                ReportTimeoutError,
                UnknownReportStatusError,
                OperationTimeoutError,
                httpx.HTTPError,
                SQLAlchemyError,
            ),
        ),
    ]


class BackfillScheduler:
    """
    Walks calendar windows newest first and fills in what the store lacks.

    A window already present for its (report type, end date) is skipped, so
    an interrupted run resumes where it stopped. Each remaining window gets up
    to `max_attempts` full Create -> Poll -> Download cycles. Terminal jobs are
    abandoned and the run moves on; an auth failure ends the run.
    """

    def __init__(
        self,
        client: ReportJobClient,
        store,
        report_types: Optional[Sequence[str]] = None,
        horizon_years: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        quota_backoff: Optional[float] = None,
        request_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.client = client
        self.store = store
        self.report_types = list(report_types or HISTORICAL_REPORT_TYPES)
        self.horizon_years = horizon_years or settings.backfill_horizon_years
        self.request_delay = request_delay
        self.sleep = sleep
        self.today = today
        self.policies = backfill_policies(
            max_attempts=max_attempts or settings.backfill_max_attempts,
            retry_backoff=settings.backfill_retry_backoff_seconds if retry_backoff is None else retry_backoff,
            quota_backoff=settings.backfill_quota_backoff_seconds if quota_backoff is None else quota_backoff,
        )

    def delay_for(self, granularity: Granularity) -> float:
        if self.request_delay is not None:
            return self.request_delay
        if granularity == Granularity.WEEK:
            return settings.backfill_weekly_request_delay_seconds
        return settings.backfill_monthly_request_delay_seconds

    async def run(self, granularity: Granularity) -> BackfillSummary:
        """Backfill every configured report type at one granularity."""
        today = self.today()
        plan = [
            (report_type, generate_windows(get_report_kind(report_type), granularity, today, self.horizon_years))
            for report_type in self.report_types
        ]
        oldest = min((windows[-1].start_date for _, windows in plan if windows), default=today)
        existing = await self.store.existing_report_keys(since=oldest, report_types=self.report_types)

        summary = BackfillSummary(granularity=granularity)
        delay = self.delay_for(granularity)
        fetched_before = False

        logger.info(
            f"Starting {granularity.value.lower()} backfill: {len(self.report_types)} report types, "
            f"{sum(len(w) for _, w in plan)} windows, {len(existing)} already stored"
        )

        for report_type, windows in plan:
            log = get_logger(__name__, report_type=report_type)
            for index, window in enumerate(windows, 1):
                prefix = f"[{report_type} {index}/{len(windows)}]"
                if window.key in existing:
                    log.debug(f"{prefix} {window} already stored, skipping")
                    summary.skipped += 1
                    record_backfill_window(report_type, "skipped")
                    continue

                if fetched_before:
                    await self.sleep(delay)
                fetched_before = True

                result, written = await self.fetch_window(window)
                setattr(summary, result, getattr(summary, result) + 1)
                summary.rows += written
                if result == "abandoned":
                    summary.abandoned_windows.append(str(window))
                record_backfill_window(report_type, result)
                log.info(f"{prefix} {window}: {result} ({written} rows)")

        logger.info(
            f"Backfill finished: {summary.fetched} fetched, {summary.empty} empty, "
            f"{summary.skipped} skipped, {summary.abandoned} abandoned, {summary.failed} failed, "
            f"{summary.rows} rows written"
        )
        return summary

    async def fetch_window(self, window: ReportWindow) -> tuple[str, int]:
        """
        Fetch and store one window with retries.

        Returns:
            (result, rows written); result is one of fetched, empty, abandoned, failed

        Raises:
            AuthRefreshError: Token refresh failed
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                items = await self.client.fetch_report(window)
                rows = build_report_rows(items, window.end_date)
                if not rows:
                    logger.warning(f"{window}: report contained no ASIN rows")
                    return "empty", 0
                written = await self.store.replace_report_rows(window.report_type, rows)
                return "fetched", written
            except AuthRefreshError:
                raise
            except TerminalJobError as e:
                logger.error(f"{window}: abandoned, {e}")
                if e.detail:
                    logger.error(f"{window}: error document: {e.detail}")
                return "abandoned", 0
            except Exception as e:
                policy = select_policy(e, self.policies)
                if policy is None:
                    logger.error(f"{window}: non-retryable error: {e}", exc_info=True)
                    return "failed", 0
                if not policy.allows_retry(attempt):
                    logger.error(f"{window}: giving up after {attempt} attempts: {e}")
                    return "failed", 0
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{window}: attempt {attempt}/{policy.max_attempts} failed ({policy.name}): {e}. "
                    f"Retrying in {delay:.0f}s"
                )
                await self.sleep(delay)
