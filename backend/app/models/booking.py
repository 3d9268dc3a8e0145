"""
Booking model representing a guest's stay at a villa.

Key design decisions:
- [start_date, end_date) is half-open: a stay ending on the 15th and one
  starting on the 15th do not conflict
- Status field allows cancellation without deleting records; only pending
  and confirmed bookings occupy their range
- Price columns are computed server-side at commit time and frozen
- On PostgreSQL the migration adds an EXCLUDE constraint
  (excl_bookings_villa_active_range) so two active bookings of one villa can
  never overlap, whatever the application does
"""

from sqlalchemy import (
    Column, Integer, String, Date, Numeric, Boolean, ForeignKey, Index, CheckConstraint,
)
from app.db.base import Base, TimestampMixin

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)

PAYMENT_PENDING = "pending"

EXCLUSION_CONSTRAINT_NAME = "excl_bookings_villa_active_range"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    villa_id = Column(Integer, ForeignKey("villas.id"), nullable=False)
    guest_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    host_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    adults = Column(Integer, nullable=False)
    children = Column(Integer, nullable=False, default=0)
    infants = Column(Integer, nullable=False, default=0)
    nights = Column(Integer, nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    cleaning_fee = Column(Numeric(10, 2), nullable=False)
    service_fee = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_PENDING)
    payment_status = Column(String(20), nullable=False, default=PAYMENT_PENDING)
    cancellation_reason = Column(String(500), nullable=True)
    is_guest_id_provided = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="check_booking_range_ordered"),
        CheckConstraint("adults >= 1", name="check_booking_adults_positive"),
        CheckConstraint("children >= 0 AND infants >= 0", name="check_booking_minors_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="check_booking_status"
        ),
        # Overlap lookups: WHERE villa_id = ? AND status IN (...) AND start_date < ? AND end_date > ?
        Index("ix_bookings_villa_status_range", "villa_id", "status", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, villa={self.villa_id}, guest={self.guest_user_id}, "
            f"{self.start_date}..{self.end_date}, status={self.status})>"
        )
