"""Tests for the scheduled recent-report sync."""

from datetime import date

import pytest

from vendor_tracker.reports.auth import AuthRefreshError
from vendor_tracker.reports.client import ReportRequestError
from vendor_tracker.reports.kinds import INVENTORY, REAL_TIME_INVENTORY, REAL_TIME_SALES, SALES, get_report_kind
from vendor_tracker.reports.sync import ReportSync
from vendor_tracker.reports.windows import Granularity

TODAY = date(2026, 3, 11)


class FakeReportClient:
    def __init__(self, fail_types=(), error=None):
        self.fail_types = set(fail_types)
        self.error = error
        self.windows = []

    async def fetch_report(self, window, max_attempts=None):
        self.windows.append(window)
        if window.report_type in self.fail_types:
            raise self.error or ReportRequestError("create", 500, "boom")
        return [
            {"asin": "B000TEST01", "date": "2026-03-09", "sellableOnHandInventoryUnits": 2},
            {"asin": "B000TEST02", "date": "2026-03-10", "sellableOnHandInventoryUnits": 0},
        ]


def make_sync(client, store):
    return ReportSync(
        client,
        store,
        weekly_days_back=30,
        realtime_days_back=14,
        lag_days=3,
        today=lambda: TODAY,
    )


def test_windows_per_kind():
    sync = make_sync(FakeReportClient(), store=None)

    weekly = sync.window_for(get_report_kind(SALES))
    assert weekly.granularity == Granularity.WEEK
    assert (weekly.start_date, weekly.end_date) == (date(2026, 2, 1), date(2026, 3, 7))

    real_time = sync.window_for(get_report_kind(REAL_TIME_INVENTORY))
    assert real_time.granularity is None
    assert (real_time.start_date, real_time.end_date) == (date(2026, 3, 4), date(2026, 3, 10))


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_others(store):
    client = FakeReportClient(fail_types={SALES})

    results = await make_sync(client, store).run([REAL_TIME_SALES, SALES, INVENTORY])

    by_type = {result.report_type: result for result in results}
    assert not by_type[SALES].success
    assert "boom" in by_type[SALES].error
    assert by_type[REAL_TIME_SALES].success
    assert by_type[INVENTORY].rows == 2
    assert len(client.windows) == 3


@pytest.mark.asyncio
async def test_rows_keyed_by_item_date(store):
    await make_sync(FakeReportClient(), store).run([REAL_TIME_INVENTORY])

    keys = await store.existing_report_keys(since=date(2026, 1, 1), report_types=[REAL_TIME_INVENTORY])
    assert keys == {(REAL_TIME_INVENTORY, date(2026, 3, 9)), (REAL_TIME_INVENTORY, date(2026, 3, 10))}


@pytest.mark.asyncio
async def test_auth_failure_propagates(store):
    client = FakeReportClient(fail_types={SALES}, error=AuthRefreshError("revoked"))

    with pytest.raises(AuthRefreshError):
        await make_sync(client, store).run([SALES])
