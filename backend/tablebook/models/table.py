"""
Restaurant tables and their per-day schedule lock.

Key design decisions:
- `is_available` is a manual override, independent of bookings
- booking rule columns are nullable and fall back to the branch values
- TableSchedule holds one version counter per (table, date); booking creation
  bumps it with a compare-and-set so two overlapping requests cannot both win
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, Float, Date, ForeignKey,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from tablebook.db.base import Base, TimestampMixin

THEMES = ("Premium", "Gen Z", "Royal", "Family", "Friends", "Business", "Romantic", "Casual")


class Table(Base, TimestampMixin):
    __tablename__ = "restaurant_tables"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    table_number = Column(String(20), nullable=False)
    seats = Column(Integer, nullable=False)
    theme = Column(String(20), nullable=False, default="Casual")
    price_multiplier = Column(Float, nullable=False, default=1.0)
    is_available = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Booking rules overriding branch defaults
    advance_booking_days = Column(Integer, nullable=True)
    min_booking_hours = Column(Float, nullable=True)
    max_booking_hours = Column(Float, nullable=True)

    branch = relationship("Branch", back_populates="tables", lazy="noload")

    __table_args__ = (
        UniqueConstraint("branch_id", "table_number", name="uq_branch_table_number"),
        CheckConstraint("seats BETWEEN 1 AND 20", name="check_table_seats_range"),
        CheckConstraint(
            "price_multiplier >= 0.5 AND price_multiplier <= 3.0",
            name="check_table_price_multiplier_range",
        ),
        Index("ix_tables_branch_theme_seats", "branch_id", "theme", "seats"),
    )

    def __repr__(self) -> str:
        return f"<Table(id={self.id}, number={self.table_number}, seats={self.seats}, theme={self.theme})>"


class TableSchedule(Base):
    __tablename__ = "table_schedules"

    id = Column(Integer, primary_key=True)
    table_id = Column(Integer, ForeignKey("restaurant_tables.id"), nullable=False)
    booking_date = Column(Date, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("table_id", "booking_date", name="uq_table_schedule_day"),
    )
