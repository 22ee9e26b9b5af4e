"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Tracked items
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('asin', sa.String(length=10), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('snooze_until', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('asin')
    )

    # Scrape observations (append-only)
    op.create_table(
        'daily_reports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('asin', sa.String(length=10), nullable=False),
        sa.Column('header', sa.Text(), nullable=True),
        sa.Column('availability', sa.String(length=32), nullable=False),
        sa.Column('stock_level', sa.String(length=255), nullable=True),
        sa.Column('seller', sa.String(length=32), nullable=False),
        sa.Column('price', sa.String(length=64), nullable=False),
        sa.Column('ranking', sa.Text(), nullable=False),
        sa.Column('price_changed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('check_date', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_daily_reports_asin_date', 'daily_reports', ['asin', 'check_date'])

    # OAuth token (single row)
    op.create_table(
        'oauth_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.String(length=1024), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Vendor report rows
    op.create_table(
        'vendor_reports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('report_type', sa.String(length=64), nullable=False),
        sa.Column('asin', sa.String(length=10), nullable=False),
        sa.Column('report_date', sa.Date(), nullable=False),
        sa.Column('data', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('data_start_date', sa.Date(), nullable=True),
        sa.Column('data_end_date', sa.Date(), nullable=True),
        sa.Column('report_request_date', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('report_type', 'asin', 'report_date', name='uq_vendor_report_key')
    )
    op.create_index(
        'idx_vendor_reports_asin_type_date',
        'vendor_reports',
        ['asin', 'report_type', 'report_date'],
    )


def downgrade() -> None:
    op.drop_index('idx_vendor_reports_asin_type_date', table_name='vendor_reports')
    op.drop_table('vendor_reports')
    op.drop_table('oauth_tokens')
    op.drop_index('idx_daily_reports_asin_date', table_name='daily_reports')
    op.drop_table('daily_reports')
    op.drop_table('products')
