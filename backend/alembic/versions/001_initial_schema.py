"""Initial schema: users, villas, calendar blocks, bookings, and the
exclusion constraint that makes double booking impossible at the storage level.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # btree_gist lets a GiST index mix "villa_id WITH =" and "daterange WITH &&"
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'guest'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("role IN ('guest', 'host', 'admin')", name="check_user_role"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Villas table
    op.create_table(
        "villas",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("host_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("location", sa.String(255), nullable=False),
        sa.Column("price_per_night", sa.Numeric(10, 2), nullable=False),
        sa.Column("cleaning_fee", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("service_fee", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("minimum_stay_nights", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("occupancy", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("cancellation_policy", sa.String(50), nullable=False, server_default=sa.text("'flexible'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'published'")),
        *_timestamps(),
        sa.CheckConstraint("price_per_night >= 0", name="check_villa_price_non_negative"),
        sa.CheckConstraint("cleaning_fee >= 0", name="check_villa_cleaning_fee_non_negative"),
        sa.CheckConstraint("service_fee >= 0", name="check_villa_service_fee_non_negative"),
        sa.CheckConstraint("minimum_stay_nights >= 1", name="check_villa_minimum_stay_positive"),
        sa.CheckConstraint("occupancy >= 1", name="check_villa_occupancy_positive"),
        sa.CheckConstraint("status IN ('draft', 'published', 'unpublished')", name="check_villa_status"),
    )
    op.create_index("ix_villas_id", "villas", ["id"])
    op.create_index("ix_villas_host_user_id", "villas", ["host_user_id"])
    op.create_index("ix_villas_status", "villas", ["status"])

    # Calendar blocks table
    op.create_table(
        "calendar_blocks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("villa_id", sa.Integer(), sa.ForeignKey("villas.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.UniqueConstraint("villa_id", "date", name="uq_calendar_block_villa_date"),
    )
    op.create_index("ix_calendar_blocks_id", "calendar_blocks", ["id"])
    op.create_index("ix_calendar_blocks_villa_date", "calendar_blocks", ["villa_id", "date"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("villa_id", sa.Integer(), sa.ForeignKey("villas.id"), nullable=False),
        sa.Column("guest_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("host_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("adults", sa.Integer(), nullable=False),
        sa.Column("children", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("infants", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("nights", sa.Integer(), nullable=False),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("cleaning_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("service_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("is_guest_id_provided", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.CheckConstraint("start_date < end_date", name="check_booking_range_ordered"),
        sa.CheckConstraint("adults >= 1", name="check_booking_adults_positive"),
        sa.CheckConstraint("children >= 0 AND infants >= 0", name="check_booking_minors_non_negative"),
        sa.CheckConstraint("status IN ('pending', 'confirmed', 'cancelled')", name="check_booking_status"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_guest_user_id", "bookings", ["guest_user_id"])
    op.create_index("ix_bookings_host_user_id", "bookings", ["host_user_id"])
    # Covers the overlap lookup the ledger runs on every availability check
    op.create_index(
        "ix_bookings_villa_status_range", "bookings", ["villa_id", "status", "start_date", "end_date"]
    )

    # EXCLUSION CONSTRAINT: the storage-level guarantee against double booking.
    # Two active bookings of the same villa whose [start, end) ranges overlap
    # cannot both exist, no matter how the application interleaves. Cancelled
    # rows are outside the predicate, so cancelling frees the range.
    op.execute(
        """
        ALTER TABLE bookings
        ADD CONSTRAINT excl_bookings_villa_active_range
        EXCLUDE USING gist (
            villa_id WITH =,
            daterange(start_date, end_date, '[)') WITH &&
        )
        WHERE (status IN ('pending', 'confirmed'))
        """
    )


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("calendar_blocks")
    op.drop_table("villas")
    op.drop_table("users")
