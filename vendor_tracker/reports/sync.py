"""Scheduled sync of the most recent vendor reports."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional, Sequence

from vendor_tracker.config import settings
from vendor_tracker.reports.auth import AuthRefreshError
from vendor_tracker.reports.client import ReportJobClient
from vendor_tracker.reports.kinds import (
    HISTORICAL_REPORT_TYPES,
    REAL_TIME_REPORT_TYPES,
    ReportKind,
    get_report_kind,
)
from vendor_tracker.reports.rows import build_report_rows
from vendor_tracker.reports.windows import (
    Granularity,
    ReportWindow,
    real_time_range,
    recent_week_range,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    report_type: str
    success: bool
    rows: int = 0
    error: Optional[str] = None


class ReportSync:
    """
    Refreshes recent data for each report type, one request per type.

    Weekly kinds cover the last few complete weeks; real-time kinds cover
    whole days up to yesterday within their maximum span. A failure in one
    kind is logged and does not stop the others.
    """

    def __init__(
        self,
        client: ReportJobClient,
        store,
        weekly_days_back: Optional[int] = None,
        realtime_days_back: Optional[int] = None,
        lag_days: Optional[int] = None,
        today: Callable[[], date] = date.today,
    ):
        self.client = client
        self.store = store
        self.weekly_days_back = weekly_days_back or settings.report_sync_weekly_days_back
        self.realtime_days_back = realtime_days_back or settings.report_sync_realtime_days_back
        self.lag_days = settings.report_sync_data_lag_days if lag_days is None else lag_days
        self.today = today

    def window_for(self, kind: ReportKind) -> ReportWindow:
        today = self.today()
        if kind.real_time:
            start, end = real_time_range(kind, today, self.realtime_days_back)
            return ReportWindow(kind, None, start, end)
        start, end = recent_week_range(today, self.weekly_days_back, self.lag_days)
        return ReportWindow(kind, Granularity.WEEK, start, end)

    async def sync_report(self, report_type: str) -> SyncResult:
        kind = get_report_kind(report_type)
        window = self.window_for(kind)
        logger.info(f"Syncing {window}")
        try:
            items = await self.client.fetch_report(window)
            rows = build_report_rows(items, window.end_date)
            written = await self.store.replace_report_rows(report_type, rows)
        except AuthRefreshError:
            raise
        except Exception as e:
            logger.error(f"Sync of {report_type} failed: {e}")
            return SyncResult(report_type, False, error=str(e))

        logger.info(f"Synced {written} {kind.label} rows")
        return SyncResult(report_type, True, rows=written)

    async def run(self, report_types: Optional[Sequence[str]] = None) -> list[SyncResult]:
        report_types = list(report_types or (REAL_TIME_REPORT_TYPES + HISTORICAL_REPORT_TYPES))
        results = []
        for report_type in report_types:
            results.append(await self.sync_report(report_type))
        ok = sum(1 for r in results if r.success)
        logger.info(f"Report sync finished: {ok}/{len(results)} report types succeeded")
        return results
