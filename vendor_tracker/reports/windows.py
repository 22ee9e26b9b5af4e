"""Calendar-aligned report windows.

Weeks run Sunday to Saturday; months run from the first to the last day.
Windows are generated newest first and never overlap.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Optional

from vendor_tracker.reports.kinds import ReportKind


class Granularity(str, Enum):
    WEEK = "WEEK"
    MONTH = "MONTH"


@dataclass(frozen=True)
class ReportWindow:
    report_kind: ReportKind
    granularity: Optional[Granularity]
    start_date: date
    end_date: date

    @property
    def report_type(self) -> str:
        return self.report_kind.report_type

    @property
    def period(self) -> Optional[str]:
        return self.granularity.value if self.granularity else None

    @property
    def data_start_time(self) -> str:
        return f"{self.start_date.isoformat()}T00:00:00Z"

    @property
    def data_end_time(self) -> str:
        return f"{self.end_date.isoformat()}T23:59:59Z"

    @property
    def key(self) -> tuple[str, date]:
        """Store key used to decide fetch vs skip."""
        return self.report_type, self.end_date

    def __str__(self) -> str:
        return f"{self.report_kind.label} {self.start_date}..{self.end_date}"


def shift_months(day: date, months: int) -> date:
    """Move a date by whole months, clamping the day to the target month's length."""
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def week_containing(day: date) -> tuple[date, date]:
    """(Sunday, Saturday) of the week holding `day`."""
    days_since_sunday = (day.weekday() + 1) % 7
    start = day - timedelta(days=days_since_sunday)
    return start, start + timedelta(days=6)


def month_containing(day: date) -> tuple[date, date]:
    """(first, last) day of the month holding `day`."""
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last_day)


def last_complete_saturday(today: date) -> date:
    """The Saturday closing the week before the current one."""
    start_of_week, _ = week_containing(today)
    return start_of_week - timedelta(days=1)


def window_containing(kind: ReportKind, granularity: Granularity, day: date) -> ReportWindow:
    if granularity == Granularity.WEEK:
        start, end = week_containing(day)
    else:
        start, end = month_containing(day)
    return ReportWindow(kind, granularity, start, end)


def generate_windows(
    kind: ReportKind,
    granularity: Granularity,
    today: date,
    horizon_years: int = 3,
) -> list[ReportWindow]:
    """
    Every complete window in the horizon, newest first.

    Weekly: Sunday-Saturday weeks ending on the last complete Saturday, while
    the week starts on or after today minus the horizon. Monthly: the
    horizon_years * 12 calendar months before the current one.
    """
    windows = []
    if granularity == Granularity.WEEK:
        horizon = shift_months(today, -12 * horizon_years)
        end = last_complete_saturday(today)
        start = end - timedelta(days=6)
        while start >= horizon:
            windows.append(ReportWindow(kind, granularity, start, end))
            end -= timedelta(days=7)
            start -= timedelta(days=7)
    else:
        first_of_month = today.replace(day=1)
        for offset in range(1, horizon_years * 12 + 1):
            start, end = month_containing(shift_months(first_of_month, -offset))
            windows.append(ReportWindow(kind, granularity, start, end))
    return windows


def window_for_offset(
    kind: ReportKind,
    granularity: Granularity,
    today: date,
    months_back: int,
) -> ReportWindow:
    """The calendar window containing today minus `months_back` months."""
    return window_containing(kind, granularity, shift_months(today, -months_back))


def recent_week_range(today: date, days_back: int = 30, lag_days: int = 3) -> tuple[date, date]:
    """
    Sunday-aligned range covering roughly the last `days_back` days.

    Ends on the newest Saturday at least `lag_days` old, so the provider has
    finished the week.
    """
    end = today - timedelta(days=lag_days)
    while end.weekday() != calendar.SATURDAY:
        end -= timedelta(days=1)
    start, _ = week_containing(end - timedelta(days=days_back))
    return start, end


def real_time_range(kind: ReportKind, today: date, days_back: int) -> tuple[date, date]:
    """Whole days ending yesterday, capped at the kind's maximum span."""
    span = min(days_back, kind.max_span_days or days_back)
    end = today - timedelta(days=1)
    return end - timedelta(days=span - 1), end
