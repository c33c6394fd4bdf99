"""
Booking and payment lifecycle rules.

    pending ──► confirmed ──► completed
       │            │
       └──► cancelled ◄┘

cancelled and completed are terminal. Check-in is a fact attached to a
confirmed booking, a rating is attached once to a completed one; neither
changes the primary status.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

from tablebook.core.exceptions import ConflictError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


# Statuses that hold a table
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}

# A payment may complete from any non-terminal state; the gateway may report
# a capture after an earlier attempt on the same order failed.
COMPLETABLE_PAYMENT_STATUSES = (
    PaymentStatus.PENDING.value,
    PaymentStatus.PROCESSING.value,
    PaymentStatus.FAILED.value,
)
FAILABLE_PAYMENT_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value)

LOYALTY_POINT_UNIT = 100
CHECK_IN_WINDOW = timedelta(minutes=30)


def can_transition(current: str, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS[BookingStatus(current)]


def ensure_transition(current: str, target: BookingStatus) -> None:
    if not can_transition(current, target):
        raise ConflictError(
            f"Booking cannot move from {current} to {target.value}",
            code="invalid_transition",
            current=current,
            target=target.value,
        )


def cancellation_refund(
    total_amount: Decimal,
    booking_start: datetime,
    now: datetime,
    free_cancellation_hours: float,
    cancellation_fee: Decimal,
) -> Decimal:
    """
    Refund owed when a paid booking is cancelled.

    Full amount when cancelled at least ``free_cancellation_hours`` before the
    slot starts, otherwise the amount less the flat fee, never below zero.
    """
    hours_until_start = (booking_start - now).total_seconds() / 3600
    if hours_until_start >= free_cancellation_hours:
        return Decimal(total_amount)
    return max(Decimal("0"), Decimal(total_amount) - Decimal(cancellation_fee))


def within_check_in_window(booking_start: datetime, now: datetime, window: timedelta = CHECK_IN_WINDOW) -> bool:
    return abs(now - booking_start) <= window


def loyalty_points_for(amount: Decimal) -> int:
    return int(Decimal(amount) // LOYALTY_POINT_UNIT)
