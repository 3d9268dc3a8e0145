"""
Villa model: the bookable listing and every number the pricing and policy
checks read.

Key design decisions:
- Money is Numeric(10, 2) and surfaces as Decimal, never float
- Villas are never deleted; `status` moves between draft/published/unpublished
- The villa row doubles as the per-villa lock target (SELECT ... FOR UPDATE)
  during booking commits
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin

VILLA_DRAFT = "draft"
VILLA_PUBLISHED = "published"
VILLA_UNPUBLISHED = "unpublished"


class Villa(Base, TimestampMixin):
    __tablename__ = "villas"

    id = Column(Integer, primary_key=True, index=True)
    host_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=False)
    price_per_night = Column(Numeric(10, 2), nullable=False)
    cleaning_fee = Column(Numeric(10, 2), nullable=False, default=0)
    service_fee = Column(Numeric(10, 2), nullable=False, default=0)
    minimum_stay_nights = Column(Integer, nullable=False, default=1)
    occupancy = Column(Integer, nullable=False, default=1)
    cancellation_policy = Column(String(50), nullable=False, default="flexible")
    status = Column(String(20), nullable=False, default=VILLA_PUBLISHED)

    # Relationships
    host = relationship("User", back_populates="villas")

    __table_args__ = (
        CheckConstraint("price_per_night >= 0", name="check_villa_price_non_negative"),
        CheckConstraint("cleaning_fee >= 0", name="check_villa_cleaning_fee_non_negative"),
        CheckConstraint("service_fee >= 0", name="check_villa_service_fee_non_negative"),
        CheckConstraint("minimum_stay_nights >= 1", name="check_villa_minimum_stay_positive"),
        CheckConstraint("occupancy >= 1", name="check_villa_occupancy_positive"),
        CheckConstraint(
            "status IN ('draft', 'published', 'unpublished')", name="check_villa_status"
        ),
        Index("ix_villas_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Villa(id={self.id}, name={self.name}, status={self.status})>"
