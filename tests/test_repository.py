"""Tests for VendorStore against SQLite."""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import StatementError

from vendor_tracker.db.models import ScrapeObservation, TrackedItem, VendorReportRow
from vendor_tracker.reports.kinds import SALES, TRAFFIC
from vendor_tracker.reports.rows import ReportRow
from vendor_tracker.scrape.base import AvailabilityState, ObservationData, SellerClass

NOW = datetime(2026, 3, 11, 10, 0, 0)


def observation(asin, price):
    return ObservationData(
        item_id=asin,
        title="Deluxe Puzzle Box",
        availability=AvailabilityState.IN_STOCK,
        seller=SellerClass.FIRST_PARTY,
        price=price,
        rank="#1,234 in Toys & Games",
    )


@pytest.mark.asyncio
async def test_snoozed_items_are_skipped(store, session_factory):
    async with session_factory() as db:
        db.add_all([
            TrackedItem(asin="B000TEST01"),
            TrackedItem(asin="B000TEST02", snooze_until=NOW + timedelta(days=2)),
            TrackedItem(asin="B000TEST03", snooze_until=NOW - timedelta(days=1)),
        ])
        await db.commit()

    items = await store.list_tracked_items(now=NOW)

    assert [item.asin for item in items] == ["B000TEST01", "B000TEST03"]


@pytest.mark.asyncio
async def test_price_change_flag(store, session_factory):
    await store.append_observation(observation("B000TEST01", "$10.00"))
    await store.append_observation(observation("B000TEST01", "$12.00"))
    await store.append_observation(observation("B000TEST01", "$12.00"))
    await store.append_observation(observation("B000TEST02", "$5.00"))

    async with session_factory() as db:
        result = await db.execute(
            select(ScrapeObservation.asin, ScrapeObservation.price_changed).order_by(ScrapeObservation.id)
        )
        flags = [tuple(row) for row in result.all()]

    assert flags == [
        ("B000TEST01", False),
        ("B000TEST01", True),
        ("B000TEST01", False),
        ("B000TEST02", False),
    ]


@pytest.mark.asyncio
async def test_oauth_token_round_trip(store):
    assert await store.load_oauth_token() is None

    expires = NOW + timedelta(hours=1)
    await store.save_oauth_token(access_token="Atza|one", expires_at=expires, refresh_token="Atzr|secret")
    state = await store.load_oauth_token()

    assert state.access_token == "Atza|one"
    assert state.refresh_token == "Atzr|secret"
    assert state.expires_at == expires

    # No new refresh token keeps the stored one
    await store.save_oauth_token(access_token="Atza|two", expires_at=expires + timedelta(hours=1))
    state = await store.load_oauth_token()

    assert state.access_token == "Atza|two"
    assert state.refresh_token == "Atzr|secret"


@pytest.mark.asyncio
async def test_refresh_token_encrypted_at_rest(store, session_factory):
    await store.save_oauth_token(access_token="Atza|one", expires_at=NOW, refresh_token="Atzr|secret")

    async with session_factory() as db:
        raw = (await db.execute(text("SELECT refresh_token FROM oauth_tokens"))).scalar_one()

    assert raw != "Atzr|secret"


@pytest.mark.asyncio
async def test_replace_report_rows_is_idempotent(store, session_factory):
    day = date(2026, 3, 7)
    rows = [
        ReportRow(asin="B000TEST01", report_date=day, data={"orderedUnits": 1}),
        ReportRow(asin="B000TEST01", report_date=day, data={"orderedUnits": 2}),
        ReportRow(asin="B000TEST02", report_date=day, data={"orderedUnits": 5}),
    ]
    assert await store.replace_report_rows(SALES, rows) == 2

    rows[1] = ReportRow(asin="B000TEST01", report_date=day, data={"orderedUnits": 7})
    assert await store.replace_report_rows(SALES, rows) == 2
    await store.replace_report_rows(TRAFFIC, [ReportRow(asin="B000TEST01", report_date=day, data={"views": 3})])

    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(VendorReportRow))).scalar_one()
        data = (
            await db.execute(
                select(VendorReportRow.data).where(
                    VendorReportRow.report_type == SALES,
                    VendorReportRow.asin == "B000TEST01",
                )
            )
        ).scalar_one()

    assert count == 3
    assert data == {"orderedUnits": 7}


@pytest.mark.asyncio
async def test_failed_replace_keeps_stored_rows(store, session_factory):
    day = date(2026, 3, 7)
    await store.replace_report_rows(SALES, [ReportRow("B000TEST01", day, {"orderedUnits": 1})])

    # A set cannot be serialized, so the insert fails after the delete ran
    with pytest.raises((TypeError, StatementError)):
        await store.replace_report_rows(SALES, [ReportRow("B000TEST01", day, {"u": {1, 2}})])

    assert await store.existing_report_keys(since=date(2026, 1, 1), report_types=[SALES]) == {(SALES, day)}
    async with session_factory() as db:
        data = (await db.execute(select(VendorReportRow.data))).scalar_one()
    assert data == {"orderedUnits": 1}


@pytest.mark.asyncio
async def test_existing_report_keys_filters(store):
    await store.replace_report_rows(SALES, [ReportRow("B000TEST01", date(2026, 3, 7), {})])
    await store.replace_report_rows(SALES, [ReportRow("B000TEST01", date(2025, 1, 4), {})])
    await store.replace_report_rows(TRAFFIC, [ReportRow("B000TEST01", date(2026, 3, 7), {})])

    keys = await store.existing_report_keys(since=date(2026, 1, 1), report_types=[SALES])

    assert keys == {(SALES, date(2026, 3, 7))}


@pytest.mark.asyncio
async def test_empty_rows_write_nothing(store):
    assert await store.replace_report_rows(SALES, []) == 0
