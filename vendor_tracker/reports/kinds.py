"""Vendor report types and how to request and read each of them."""

from dataclasses import dataclass
from typing import Optional

SALES = "GET_VENDOR_SALES_REPORT"
TRAFFIC = "GET_VENDOR_TRAFFIC_REPORT"
NET_PURE_PRODUCT_MARGIN = "GET_VENDOR_NET_PURE_PRODUCT_MARGIN_REPORT"
INVENTORY = "GET_VENDOR_INVENTORY_REPORT"
REAL_TIME_INVENTORY = "GET_VENDOR_REAL_TIME_INVENTORY_REPORT"
REAL_TIME_SALES = "GET_VENDOR_REAL_TIME_SALES_REPORT"

FALLBACK_DATA_KEY = "reportData"


@dataclass(frozen=True)
class ReportKind:
    """
    One SP-API vendor report type.

    `data_key` names the payload field holding the per-ASIN array.
    `supports_distributor_view` marks the kinds that accept
    distributorView/sellingProgram options. Real-time kinds take an arbitrary
    span of at most `max_span_days` and no reportPeriod.
    """

    report_type: str
    label: str
    data_key: str
    supports_distributor_view: bool = False
    real_time: bool = False
    max_span_days: Optional[int] = None


REPORT_KINDS: dict[str, ReportKind] = {
    kind.report_type: kind
    for kind in (
        ReportKind(SALES, "Sales", "salesByAsin", supports_distributor_view=True),
        ReportKind(TRAFFIC, "Traffic", "trafficByAsin"),
        ReportKind(NET_PURE_PRODUCT_MARGIN, "Net Pure Product Margin", "netPureProductMarginByAsin"),
        ReportKind(INVENTORY, "Inventory", "inventoryByAsin", supports_distributor_view=True),
        ReportKind(REAL_TIME_INVENTORY, "Real-Time Inventory", FALLBACK_DATA_KEY, real_time=True, max_span_days=7),
        ReportKind(REAL_TIME_SALES, "Real-Time Sales", FALLBACK_DATA_KEY, real_time=True, max_span_days=14),
    )
}

HISTORICAL_REPORT_TYPES = [SALES, TRAFFIC, NET_PURE_PRODUCT_MARGIN, INVENTORY]
REAL_TIME_REPORT_TYPES = [REAL_TIME_INVENTORY, REAL_TIME_SALES]


def get_report_kind(report_type: str) -> ReportKind:
    """Look up a kind by report type; unknown types raise KeyError."""
    try:
        return REPORT_KINDS[report_type]
    except KeyError:
        raise KeyError(f"Unknown report type: {report_type}") from None


def build_report_options(kind: ReportKind, period: Optional[str]) -> Optional[dict]:
    """reportOptions for a request, or None for real-time kinds."""
    if kind.real_time or period is None:
        return None
    options = {"reportPeriod": period}
    if kind.supports_distributor_view:
        options["distributorView"] = "MANUFACTURING"
        options["sellingProgram"] = "RETAIL"
    return options
