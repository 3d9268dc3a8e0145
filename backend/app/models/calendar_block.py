"""
Host-declared calendar overrides.

One row per villa per explicitly set date; no row means available. Booked
nights are never written here, they are derived from active bookings.
"""

from sqlalchemy import Column, Integer, Date, Boolean, ForeignKey, UniqueConstraint, Index

from app.db.base import Base, TimestampMixin


class CalendarBlock(Base, TimestampMixin):
    __tablename__ = "calendar_blocks"

    id = Column(Integer, primary_key=True, index=True)
    villa_id = Column(Integer, ForeignKey("villas.id"), nullable=False)
    date = Column(Date, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    is_blocked = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("villa_id", "date", name="uq_calendar_block_villa_date"),
        Index("ix_calendar_blocks_villa_date", "villa_id", "date"),
    )

    @property
    def blocks_stay(self) -> bool:
        return self.is_blocked or not self.is_available

    def __repr__(self) -> str:
        return (
            f"<CalendarBlock(villa={self.villa_id}, date={self.date}, "
            f"available={self.is_available}, blocked={self.is_blocked})>"
        )
