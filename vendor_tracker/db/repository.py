"""Store operations used by the scraper and the report pipeline."""

import logging
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vendor_tracker.db.models import OAuthToken, ScrapeObservation, TrackedItem, VendorReportRow
from vendor_tracker.reports.rows import ReportRow
from vendor_tracker.reports.auth import OAuthTokenState
from vendor_tracker.scrape.base import ObservationData

logger = logging.getLogger(__name__)


class VendorStore:
    """
    Database access for both feeds.

    Every method opens its own short-lived session so a long scrape run or a
    multi-hour backfill never holds a connection between items.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from vendor_tracker.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Tracked items and observations
    # ------------------------------------------------------------------

    async def list_tracked_items(self, now: Optional[datetime] = None) -> list[TrackedItem]:
        """Return tracked items in id order, skipping snoozed ones."""
        now = now or datetime.utcnow()
        async with self.session_factory() as db:
            query = (
                select(TrackedItem)
                .where(or_(TrackedItem.snooze_until.is_(None), TrackedItem.snooze_until <= now))
                .order_by(TrackedItem.id)
            )
            result = await db.execute(query)
            return list(result.scalars().all())

    async def append_observation(self, observation: ObservationData) -> ScrapeObservation:
        """Insert an observation, flagging a price change against the previous one."""
        async with self.session_factory() as db:
            previous = await db.execute(
                select(ScrapeObservation.price)
                .where(ScrapeObservation.asin == observation.item_id)
                .order_by(ScrapeObservation.id.desc())
                .limit(1)
            )
            previous_price = previous.scalar_one_or_none()

            row = ScrapeObservation(
                asin=observation.item_id,
                header=observation.title,
                availability=observation.availability.value,
                stock_level=observation.stock_note,
                seller=observation.seller.value,
                price=observation.price,
                ranking=observation.rank,
                price_changed=previous_price is not None and previous_price != observation.price,
                check_date=observation.observed_at,
            )
            db.add(row)
            await db.commit()
            return row

    # ------------------------------------------------------------------
    # OAuth token
    # ------------------------------------------------------------------

    async def load_oauth_token(self) -> Optional[OAuthTokenState]:
        """Load the current token pair, or None if OAuth was never completed."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(OAuthToken).order_by(OAuthToken.id.desc()).limit(1)
            )
            token = result.scalar_one_or_none()
            if token is None:
                return None
            return OAuthTokenState(
                access_token=token.access_token,
                refresh_token=token.refresh_token,
                expires_at=token.expires_at,
            )

    async def save_oauth_token(
        self,
        access_token: str,
        expires_at: datetime,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Update the token row in place (inserting it on first authorization)."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(OAuthToken).order_by(OAuthToken.id.desc()).limit(1)
            )
            token = result.scalar_one_or_none()
            if token is None:
                token = OAuthToken(refresh_token=refresh_token)
                db.add(token)
            elif refresh_token:
                token.refresh_token = refresh_token
            token.access_token = access_token
            token.expires_at = expires_at
            token.updated_at = datetime.utcnow()
            await db.commit()

    # ------------------------------------------------------------------
    # Vendor report rows
    # ------------------------------------------------------------------

    async def existing_report_keys(
        self,
        since: date,
        report_types: Optional[Iterable[str]] = None,
    ) -> set[tuple[str, date]]:
        """Distinct (report_type, report_date) pairs stored on or after `since`."""
        async with self.session_factory() as db:
            query = (
                select(VendorReportRow.report_type, VendorReportRow.report_date)
                .where(VendorReportRow.report_date >= since)
                .distinct()
            )
            if report_types is not None:
                query = query.where(VendorReportRow.report_type.in_(list(report_types)))
            result = await db.execute(query)
            return {(row[0], row[1]) for row in result.all()}

    async def replace_report_rows(self, report_type: str, rows: list[ReportRow]) -> int:
        """
        Delete-then-insert the rows of one report, in a single transaction.

        Rows are keyed by (report_type, asin, report_date); a crash between
        the delete and the insert rolls both back, so refetching a window is
        idempotent.

        Returns:
            Number of rows written
        """
        unique: dict[tuple[str, date], ReportRow] = {}
        for row in rows:
            unique[(row.asin, row.report_date)] = row
        if not unique:
            return 0

        asins = sorted({asin for asin, _ in unique})
        dates = sorted({report_date for _, report_date in unique})

        async with self.session_factory() as db:
            async with db.begin():
                await db.execute(
                    delete(VendorReportRow).where(
                        VendorReportRow.report_type == report_type,
                        VendorReportRow.report_date.in_(dates),
                        VendorReportRow.asin.in_(asins),
                    )
                )
                db.add_all(
                    VendorReportRow(
                        report_type=report_type,
                        asin=row.asin,
                        report_date=row.report_date,
                        data=row.data,
                        data_start_date=row.data_start_date,
                        data_end_date=row.data_end_date,
                        report_request_date=datetime.utcnow(),
                    )
                    for row in unique.values()
                )

        logger.debug(f"Replaced {len(unique)} {report_type} rows for {len(dates)} report date(s)")
        return len(unique)
