"""Normalized per-ASIN rows from a downloaded report."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

REPORT_DATE_FIELDS = ("endDate", "startDate", "date", "endTime")


@dataclass
class ReportRow:
    asin: str
    report_date: date
    data: dict[str, Any]
    data_start_date: Optional[date] = None
    data_end_date: Optional[date] = None


def parse_day(value: Any) -> Optional[date]:
    """Leading YYYY-MM-DD of a date or timestamp string."""
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def build_report_rows(items: Iterable[Any], fallback_date: date) -> list[ReportRow]:
    """
    Turn report items into rows.

    Items without an ASIN are dropped. The report date is the item's own
    end/start date when present, else `fallback_date` (the window end).
    """
    rows = []
    skipped = 0
    for item in items:
        if not isinstance(item, dict) or not item.get("asin"):
            skipped += 1
            continue

        report_date = None
        for field_name in REPORT_DATE_FIELDS:
            report_date = parse_day(item.get(field_name))
            if report_date:
                break

        rows.append(
            ReportRow(
                asin=str(item["asin"]),
                report_date=report_date or fallback_date,
                data=item,
                data_start_date=parse_day(item.get("startDate")),
                data_end_date=parse_day(item.get("endDate")),
            )
        )

    if skipped:
        logger.debug(f"Dropped {skipped} report items without an ASIN")
    return rows
