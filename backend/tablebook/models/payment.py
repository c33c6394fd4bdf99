"""
Payment record for a booking, with its refund sub-record inlined.

Key design decisions:
- Unique booking_id: one payment per booking, the DB-level backstop for the
  compare-and-set in create_order
- Unique gateway_order_id: verify and webhook callbacks look payments up by it
- Status transitions are applied with conditional UPDATEs, never by
  read-modify-write on a loaded object
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, JSON, CheckConstraint, Index,
)

from tablebook.db.base import Base, TimestampMixin


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(24), unique=True, nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    method = Column(String(20), nullable=False, default="razorpay")
    status = Column(String(20), nullable=False, default="pending")

    # Gateway correlation
    gateway = Column(String(20), nullable=True)
    gateway_order_id = Column(String(64), unique=True, nullable=True, index=True)
    gateway_payment_id = Column(String(64), nullable=True, index=True)
    gateway_signature = Column(String(128), nullable=True)
    gateway_response = Column(JSON, nullable=True)

    # Transaction details
    transaction_id = Column(String(64), nullable=True)
    transaction_date = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(String(255), nullable=True)
    gateway_fee = Column(Numeric(10, 2), nullable=False, default=0)
    loyalty_points_awarded = Column(Integer, nullable=False, default=0)

    # Refund
    refund_reference = Column(String(32), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    refund_reason = Column(String(200), nullable=True)
    refund_status = Column(String(20), nullable=True)
    refund_method = Column(String(20), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    gateway_refund_id = Column(String(64), nullable=True)
    refund_failure_reason = Column(String(255), nullable=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled', 'refunded')",
            name="check_payment_status",
        ),
        CheckConstraint(
            "refund_status IS NULL OR refund_status IN ('pending', 'processed', 'failed')",
            name="check_payment_refund_status",
        ),
        Index("ix_payments_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, ref={self.reference}, booking={self.booking_id}, status={self.status})>"


class WebhookEvent(Base):
    """Every webhook delivery that passed signature verification."""

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(64), unique=True, nullable=True)
    event_type = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)
    result = Column(String(20), nullable=False)  # processed, unchanged, ignored, rejected, logged
    error_message = Column(String(255), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False)
