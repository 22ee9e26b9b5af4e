"""SQLAlchemy database models."""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from vendor_tracker.db.encryption import EncryptedString

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TrackedItem(Base):
    """Catalog item (ASIN) whose product page is scraped."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    asin: Mapped[str] = mapped_column(String(10), unique=True, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    snooze_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True
    )


class ScrapeObservation(Base):
    """One scrape of one product page. Rows are never updated."""

    __tablename__ = "daily_reports"
    __table_args__ = (
        Index("idx_daily_reports_asin_date", "asin", "check_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    asin: Mapped[str] = mapped_column(String(10), nullable=False)
    header: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # Product title
    availability: Mapped[str] = mapped_column(String(32), nullable=False)
    stock_level: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    seller: Mapped[str] = mapped_column(String(32), nullable=False)
    price: Mapped[str] = mapped_column(String(64), nullable=False, default="N/A")
    ranking: Mapped[str] = mapped_column(Text, nullable=False, default="N/A")
    price_changed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    check_date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class OAuthToken(Base):
    """LWA token pair. A single row, written only by the token manager."""

    __tablename__ = "oauth_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[Optional[str]] = mapped_column(EncryptedString(1024), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class VendorReportRow(Base):
    """Per-ASIN record from a downloaded vendor report."""

    __tablename__ = "vendor_reports"
    __table_args__ = (
        UniqueConstraint("report_type", "asin", "report_date", name="uq_vendor_report_key"),
        Index("idx_vendor_reports_asin_type_date", "asin", "report_type", "report_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    report_type: Mapped[str] = mapped_column(String(64), nullable=False)
    asin: Mapped[str] = mapped_column(String(10), nullable=False)
    report_date: Mapped[date] = mapped_column(Date, nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    data_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    data_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    report_request_date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
