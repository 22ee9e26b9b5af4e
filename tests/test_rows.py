"""Tests for report item normalization."""

from datetime import date

from vendor_tracker.reports.kinds import INVENTORY, REAL_TIME_SALES, TRAFFIC, build_report_options, get_report_kind
from vendor_tracker.reports.rows import build_report_rows

WINDOW_END = date(2026, 3, 7)


def test_items_without_asin_are_dropped():
    rows = build_report_rows([{"asin": "B000TEST01"}, {"orderedUnits": 4}, "junk", {"asin": ""}], WINDOW_END)

    assert [row.asin for row in rows] == ["B000TEST01"]


def test_report_date_prefers_item_dates():
    rows = build_report_rows(
        [
            {"asin": "A1", "startDate": "2026-02-01", "endDate": "2026-02-07"},
            {"asin": "A2", "startDate": "2026-02-08"},
            {"asin": "A3", "endTime": "2026-03-05T23:59:59Z"},
            {"asin": "A4"},
        ],
        WINDOW_END,
    )

    assert [row.report_date for row in rows] == [
        date(2026, 2, 7),
        date(2026, 2, 8),
        date(2026, 3, 5),
        WINDOW_END,
    ]
    assert rows[0].data_start_date == date(2026, 2, 1)


def test_report_options():
    assert build_report_options(get_report_kind(INVENTORY), "MONTH") == {
        "reportPeriod": "MONTH",
        "distributorView": "MANUFACTURING",
        "sellingProgram": "RETAIL",
    }
    assert build_report_options(get_report_kind(TRAFFIC), "WEEK") == {"reportPeriod": "WEEK"}
    assert build_report_options(get_report_kind(REAL_TIME_SALES), "WEEK") is None
