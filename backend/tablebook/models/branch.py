"""
Branch reference data: operating hours, capacity and cancellation policy.

Branches are soft-deleted (is_active=False) and never removed, since
historic bookings point at them.
"""

from sqlalchemy import Column, Integer, String, Boolean, Numeric, Float, JSON, CheckConstraint
from sqlalchemy.orm import relationship

from tablebook.db.base import Base, TimestampMixin


class Branch(Base, TimestampMixin):
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")

    # {"monday": {"open": "10:00", "close": "23:00", "is_open": true}, ...}
    operating_hours = Column(JSON, nullable=False, default=dict)

    total_seats = Column(Integer, nullable=False, default=0)
    max_party_size = Column(Integer, nullable=False, default=20)

    # Cancellation policy
    free_cancellation_hours = Column(Float, nullable=False, default=24)
    cancellation_fee = Column(Numeric(10, 2), nullable=False, default=0)

    # Booking rules; null means unrestricted
    min_booking_hours = Column(Float, nullable=True)
    max_booking_hours = Column(Float, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    tables = relationship("Table", back_populates="branch", lazy="noload")

    __table_args__ = (
        CheckConstraint("cancellation_fee >= 0", name="check_branch_cancellation_fee"),
        CheckConstraint("free_cancellation_hours >= 0", name="check_branch_free_cancellation_hours"),
    )

    def __repr__(self) -> str:
        return f"<Branch(id={self.id}, name={self.name}, active={self.is_active})>"
