"""Find how far back the provider still serves report data."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, Optional, Sequence

import httpx

from vendor_tracker.config import settings
from vendor_tracker.reports.auth import AuthRefreshError
from vendor_tracker.reports.client import (
    ReportJobClient,
    ReportJobError,
    ReportTimeoutError,
    TerminalJobError,
)
from vendor_tracker.reports.kinds import get_report_kind
from vendor_tracker.reports.windows import Granularity, ReportWindow, window_for_offset
from vendor_tracker.utils.retry import OperationTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class ProbePoint:
    months_back: int
    window: ReportWindow
    success: bool
    status: str
    error: Optional[str] = None


@dataclass
class BoundaryResult:
    report_type: str
    granularity: Granularity
    points: list[ProbePoint] = field(default_factory=list)
    last_success: Optional[ProbePoint] = None
    first_failure: Optional[ProbePoint] = None

    @property
    def crossed(self) -> bool:
        """True when a failure was seen after a success."""
        return self.last_success is not None and self.first_failure is not None

    def describe(self) -> str:
        if self.crossed:
            return (
                f"data available {self.last_success.months_back} months back "
                f"({self.last_success.window.start_date}), not at {self.first_failure.months_back} months "
                f"({self.first_failure.window.start_date})"
            )
        if self.last_success is not None:
            return f"all probes succeeded, oldest {self.last_success.months_back} months back"
        return "no probe succeeded"


class BoundaryProber:
    """
    Probes descending lookback offsets with Create -> Poll only.

    Stops at the first failure that follows a success. A failure seen before
    any success (a too-recent window, a transient error) does not stop the
    walk.
    """

    def __init__(
        self,
        client: ReportJobClient,
        offsets_months: Optional[Sequence[int]] = None,
        poll_max_attempts: Optional[int] = None,
        probe_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.client = client
        self.offsets_months = list(offsets_months or settings.boundary_probe_offsets_months)
        self.poll_max_attempts = poll_max_attempts or settings.boundary_probe_poll_max_attempts
        self.probe_delay = settings.boundary_probe_delay_seconds if probe_delay is None else probe_delay
        self.sleep = sleep
        self.today = today

    async def probe(self, report_type: str, granularity: Granularity) -> BoundaryResult:
        kind = get_report_kind(report_type)
        today = self.today()
        result = BoundaryResult(report_type=report_type, granularity=granularity)

        for index, months_back in enumerate(sorted(self.offsets_months)):
            if index:
                await self.sleep(self.probe_delay)

            window = window_for_offset(kind, granularity, today, months_back)
            point = await self._probe_one(window, months_back)
            result.points.append(point)
            logger.info(
                f"Probe {report_type} {months_back}mo ({window.start_date}..{window.end_date}): {point.status}"
            )

            if point.success:
                result.last_success = point
                result.first_failure = None
                continue

            if result.first_failure is None:
                result.first_failure = point
            if result.last_success is not None:
                break

        logger.info(f"Boundary for {report_type}: {result.describe()}")
        return result

    async def _probe_one(self, window: ReportWindow, months_back: int) -> ProbePoint:
        try:
            await self.client.probe_window(window, max_attempts=self.poll_max_attempts)
        except AuthRefreshError:
            raise
        except TerminalJobError as e:
            return ProbePoint(months_back, window, False, e.status.value, e.detail)
        except ReportTimeoutError as e:
            return ProbePoint(months_back, window, False, "TIMEOUT", str(e))
        except (ReportJobError, OperationTimeoutError, httpx.HTTPError) as e:
            return ProbePoint(months_back, window, False, "ERROR", str(e))
        return ProbePoint(months_back, window, True, "DONE")
