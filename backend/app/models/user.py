"""
User model. Credentials live with the identity service; this table only
records who exists and in which role.
"""

from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="guest")  # guest, host, admin
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    villas = relationship("Villa", back_populates="host")

    __table_args__ = (
        CheckConstraint("role IN ('guest', 'host', 'admin')", name="check_user_role"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
