"""
Booking model representing a party's hold on a table for a time slot.

Key design decisions:
- The slot is stored as date + start/end clock times, half-open [start, end)
- Status only covers the primary lifecycle; check-in and rating are separate
  columns attached to confirmed / completed bookings
- `payment_id` is set by a compare-and-set update (WHERE payment_id IS NULL),
  which is what enforces one payment per booking under concurrency
- Composite index on (table_id, booking_date, status) serves the availability
  lookup, the hottest query in the system
"""

from sqlalchemy import (
    Column, Integer, String, Text, Date, Time, DateTime, Numeric, ForeignKey,
    CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from tablebook.db.base import Base, TimestampMixin


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(20), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("restaurant_tables.id"), nullable=False)

    booking_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    party_size = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    special_requests = Column(String(500), nullable=True)

    # Amounts
    subtotal_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    offer_id = Column(Integer, ForeignKey("offers.id"), nullable=True)

    payment_id = Column(Integer, nullable=True, index=True)
    version = Column(Integer, nullable=False, default=1)

    # Check-in
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_by = Column(Integer, nullable=True)

    # Cancellation
    cancelled_by = Column(String(20), nullable=True)  # user, admin, system
    cancellation_reason = Column(String(200), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Rating, write-once
    rating_food = Column(Integer, nullable=True)
    rating_service = Column(Integer, nullable=True)
    rating_ambiance = Column(Integer, nullable=True)
    rating_overall = Column(Integer, nullable=True)
    review = Column(String(500), nullable=True)
    rated_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="bookings", lazy="noload")
    items = relationship(
        "BookingItem",
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("party_size > 0", name="check_booking_party_size_positive"),
        CheckConstraint("start_time < end_time", name="check_booking_slot_order"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
            name="check_booking_status",
        ),
        CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        Index("ix_bookings_table_date_status", "table_id", "booking_date", "status"),
    )

    @property
    def is_rated(self) -> bool:
        return self.rated_at is not None

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, ref={self.reference}, table={self.table_id}, status={self.status})>"


class BookingItem(Base):
    __tablename__ = "booking_items"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    menu_item_id = Column(String(64), nullable=True)
    name = Column(String(100), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    special_instructions = Column(Text, nullable=True)

    booking = relationship("Booking", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_item_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="check_item_price_non_negative"),
    )
