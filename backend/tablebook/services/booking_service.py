"""
Booking service with concurrency-safe table reservation.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Problem:
  Two guests ask for table 7 at 19:00 simultaneously.
  Both check availability, both see the table free, both insert a booking.
  Result: Double-booking.

Solution:
  Overlap is a property of a set of rows, so there is no single row to put a
  version on. We create one: a TableSchedule row per (table, date) with a
  `version` column, and every booking creation for that table/day must bump it.

  1. Read the schedule's current version (creating the row if needed)
  2. Check the table is free for the slot
  3. UPDATE table_schedules SET version = version + 1
     WHERE table_id = :table AND booking_date = :date AND version = :read
  4. If rows_affected == 0, someone else booked that table/day in between -> retry

  On retry the availability check sees the winner's booking and the loser gets
  a clean "not available" conflict. Bookings on other tables or other days
  never contend with each other.

  Lifecycle transitions after creation use the same pattern on the booking's
  own `version` column, so a cancel racing a confirm cannot both apply.

Alternative approaches considered:
  - SELECT FOR UPDATE on the table row: serialises every booking for the
    table across all dates.
  - An exclusion constraint on tstzrange: PostgreSQL-only and leaves no room
    for the friendly retry/conflict path.
"""

import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tablebook.core.config import get_settings
from tablebook.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    TableBookError,
    ValidationError,
)
from tablebook.core.logging import get_logger
from tablebook.core.metrics import (
    booking_latency,
    record_booking_attempt,
    record_booking_transition,
    schedule_lock_retries,
)
from tablebook.core.security import Actor
from tablebook.db.statements import insert_ignore
from tablebook.domain.booking_state import (
    BookingStatus,
    PaymentStatus,
    cancellation_refund,
    ensure_transition,
    within_check_in_window,
)
from tablebook.domain.identifiers import new_booking_reference
from tablebook.domain.offers import compute_discount
from tablebook.domain.timeslot import TimeSlot, day_schedule_for, weekday_name, within_operating_hours, zone
from tablebook.models.booking import Booking, BookingItem
from tablebook.models.branch import Branch
from tablebook.models.payment import Payment
from tablebook.models.table import Table, TableSchedule
from tablebook.models.user import User
from tablebook.schemas.booking import BookingCreate, BookingRate
from tablebook.services import availability_service, notification_service, offer_service, payment_service
from tablebook.services.interfaces.gateway import PaymentGateway

logger = get_logger(__name__)
settings = get_settings()

TWO_PLACES = Decimal("0.01")


def _utc(now: Optional[datetime]) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now


def _slot_of(booking: Booking) -> TimeSlot:
    return TimeSlot(booking.booking_date, booking.start_time, booking.end_time)


def _event_payload(booking: Booking) -> dict:
    return {
        "booking_id": booking.id,
        "reference": booking.reference,
        "table_id": booking.table_id,
        "booking_date": booking.booking_date.isoformat(),
        "start_time": booking.start_time.strftime("%H:%M"),
        "end_time": booking.end_time.strftime("%H:%M"),
        "party_size": booking.party_size,
        "status": booking.status,
    }


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def _load_table(db: AsyncSession, branch: Branch, table_id: int) -> Table:
    table = await db.get(Table, table_id)
    if table is None or not table.is_active:
        raise NotFoundError("Table not found or inactive", code="table_not_found")
    if table.branch_id != branch.id:
        raise ValidationError("Table does not belong to this branch", code="table_branch_mismatch")
    if not table.is_available:
        raise ValidationError("Table is currently out of service", code="table_out_of_service")
    return table


def _check_booking_rules(branch: Branch, table: Table, slot: TimeSlot, now: datetime) -> None:
    tz = zone(branch.timezone)
    if slot.starts_at(tz) <= now:
        raise ValidationError("Cannot book a time slot in the past", code="slot_in_past")

    min_hours = table.min_booking_hours if table.min_booking_hours is not None else branch.min_booking_hours
    max_hours = table.max_booking_hours if table.max_booking_hours is not None else branch.max_booking_hours
    duration = slot.duration_hours
    if min_hours is not None and duration < min_hours:
        raise ValidationError(f"Minimum booking duration is {min_hours} hours", code="booking_too_short")
    if max_hours is not None and duration > max_hours:
        raise ValidationError(f"Maximum booking duration is {max_hours} hours", code="booking_too_long")

    if table.advance_booking_days is not None:
        local_today = now.astimezone(tz).date()
        if (slot.booking_date - local_today).days > table.advance_booking_days:
            raise ValidationError(
                f"Bookings open {table.advance_booking_days} days in advance",
                code="too_far_in_advance",
            )


async def _schedule_version(db: AsyncSession, table_id: int, booking_date) -> int:
    await db.execute(
        insert_ignore(
            db,
            TableSchedule,
            {"table_id": table_id, "booking_date": booking_date, "version": 1},
            ["table_id", "booking_date"],
        )
    )
    return await db.scalar(
        select(TableSchedule.version).where(
            TableSchedule.table_id == table_id,
            TableSchedule.booking_date == booking_date,
        )
    )


async def _claim_slot(db: AsyncSession, table: Table, slot: TimeSlot) -> int:
    """Run check-then-bump under the schedule version lock. Returns the attempt that won."""
    max_attempts = settings.BOOKING_MAX_RETRY_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        version = await _schedule_version(db, table.id, slot.booking_date)

        if not await availability_service.is_table_free(db, table.id, slot.booking_date, slot):
            logger.warning(
                "booking_failed_slot_taken",
                table_id=table.id,
                slot=str(slot),
                attempt=attempt,
            )
            raise ConflictError(
                "Table is not available for the selected time",
                code="slot_unavailable",
                table_id=table.id,
            )

        claimed = await db.execute(
            update(TableSchedule)
            .where(
                TableSchedule.table_id == table.id,
                TableSchedule.booking_date == slot.booking_date,
                TableSchedule.version == version,
            )
            .values(version=TableSchedule.version + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 1:
            return attempt

        # Version conflict - another transaction booked this table/day
        schedule_lock_retries.inc()
        logger.info(
            "booking_retry",
            table_id=table.id,
            booking_date=slot.booking_date.isoformat(),
            attempt=attempt,
            reason="version_conflict",
        )

    raise ConflictError(
        "Booking failed due to high demand. Please try again.",
        code="schedule_contention",
        table_id=table.id,
    )


def _subtotal(request: BookingCreate, table: Table) -> Decimal:
    items_total = sum((item.unit_price * item.quantity for item in request.items), Decimal("0"))
    amount = items_total * Decimal(str(table.price_multiplier))
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


async def _create_booking(db: AsyncSession, actor: Actor, request: BookingCreate, now: datetime) -> Booking:
    user = await db.get(User, actor.user_id) if actor.user_id is not None else None
    if user is None or not user.is_active:
        raise NotFoundError("User not found", code="user_not_found")

    branch = await availability_service.get_active_branch(db, request.branch_id)
    table = await _load_table(db, branch, request.table_id)

    if request.party_size > table.seats:
        raise ValidationError(
            f"Party size {request.party_size} exceeds table capacity of {table.seats}",
            code="party_too_large",
        )
    if request.party_size > branch.max_party_size:
        raise ValidationError(
            f"Branch accepts parties of up to {branch.max_party_size}",
            code="party_too_large",
        )

    slot = TimeSlot(request.booking_date, request.start_time, request.end_time)
    schedule = day_schedule_for(branch.operating_hours, slot.booking_date)
    if not schedule.is_open:
        raise ValidationError(
            f"Branch is closed on {weekday_name(slot.booking_date).capitalize()}",
            code="branch_closed",
        )
    if not within_operating_hours(slot, schedule):
        raise ValidationError(
            f"Branch is open from {schedule.describe()}",
            code="outside_operating_hours",
        )
    _check_booking_rules(branch, table, slot, now)

    attempt = await _claim_slot(db, table, slot)

    subtotal = _subtotal(request, table)
    discount = Decimal("0")
    offer_id = None
    if request.offer_code:
        offer = await offer_service.find_offer_by_code(db, request.offer_code, branch.id)
        offer = await offer_service.apply_offer(
            db,
            offer,
            user,
            subtotal,
            request.party_size,
            now.astimezone(zone(branch.timezone)),
            request.payment_method,
        )
        discount = compute_discount(offer, subtotal)
        offer_id = offer.id

    booking = Booking(
        reference=new_booking_reference(now),
        user_id=user.id,
        branch_id=branch.id,
        table_id=table.id,
        booking_date=slot.booking_date,
        start_time=slot.start,
        end_time=slot.end,
        party_size=request.party_size,
        status=BookingStatus.PENDING.value,
        special_requests=request.special_requests,
        subtotal_amount=subtotal,
        discount_amount=discount,
        total_amount=subtotal - discount,
        offer_id=offer_id,
        version=1,
        items=[
            BookingItem(
                menu_item_id=item.menu_item_id,
                name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                special_instructions=item.special_instructions,
            )
            for item in request.items
        ],
    )
    db.add(booking)
    await db.flush()
    await db.refresh(booking)

    logger.info(
        "booking_created",
        booking_id=booking.id,
        reference=booking.reference,
        user_id=user.id,
        table_id=table.id,
        slot=str(slot),
        total=str(booking.total_amount),
        attempt=attempt,
    )
    return booking


async def create_booking(
    db: AsyncSession,
    actor: Actor,
    request: BookingCreate,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Create a pending booking for the actor.

    Validates branch, table, capacity, operating hours and booking rules, then
    claims the slot under the table/day version lock, retrying up to
    BOOKING_MAX_RETRY_ATTEMPTS times on version conflicts.
    """
    started = time.perf_counter()
    try:
        booking = await _create_booking(db, actor, request, _utc(now))
    except ConflictError:
        record_booking_attempt("conflict")
        raise
    except TableBookError:
        record_booking_attempt("rejected")
        raise
    booking_latency.observe(time.perf_counter() - started)
    record_booking_attempt("success")
    record_booking_transition(BookingStatus.PENDING.value)

    await notification_service.emit(
        notification_service.BOOKING_CREATED, _event_payload(booking), booking.branch_id
    )
    return booking


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def _load_booking(db: AsyncSession, booking_id: int) -> Booking:
    booking = await db.get(Booking, booking_id, populate_existing=True)
    if booking is None:
        raise NotFoundError("Booking not found", code="booking_not_found")
    return booking


async def get_booking(db: AsyncSession, booking_id: int, actor: Actor) -> Booking:
    booking = await _load_booking(db, booking_id)
    if not actor.can_access(booking.user_id):
        raise AuthorizationError("You can only access your own bookings")
    return booking


async def _transition(
    db: AsyncSession,
    booking: Booking,
    target: BookingStatus,
    **values,
) -> Booking:
    """Apply a status change only if nobody else changed the booking since it was read."""
    ensure_transition(booking.status, target)
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.status == booking.status,
            Booking.version == booking.version,
        )
        .values(status=target.value, version=Booking.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError(
            "Booking was modified by another request. Please retry.",
            code="concurrent_update",
            booking_id=booking.id,
        )
    await db.refresh(booking)
    record_booking_transition(target.value)
    return booking


async def _booking_start(db: AsyncSession, booking: Booking) -> datetime:
    branch = await db.get(Branch, booking.branch_id)
    return _slot_of(booking).starts_at(zone(branch.timezone if branch else None))


async def cancel_booking(
    db: AsyncSession,
    gateway: PaymentGateway,
    booking_id: int,
    actor: Actor,
    reason: str,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Cancel a pending or confirmed booking.

    A confirmed booking with a completed payment is refunded according to the
    branch cancellation policy before the status changes; if the gateway
    refuses the refund, the booking stays as it was. An unsettled payment is
    cancelled along with the booking.
    """
    now = _utc(now)
    booking = await get_booking(db, booking_id, actor)
    ensure_transition(booking.status, BookingStatus.CANCELLED)

    refund = Decimal("0")
    payment = None
    if booking.status == BookingStatus.CONFIRMED.value and booking.payment_id is not None:
        payment = await db.get(Payment, booking.payment_id, populate_existing=True)
        if payment is not None and payment.status == PaymentStatus.COMPLETED.value:
            branch = await db.get(Branch, booking.branch_id)
            # A deposit taken against a booking with nothing pre-ordered
            refundable = booking.total_amount if booking.total_amount > 0 else payment.amount
            refund = cancellation_refund(
                refundable,
                _slot_of(booking).starts_at(zone(branch.timezone)),
                now,
                branch.free_cancellation_hours,
                branch.cancellation_fee,
            )
            refund = min(refund, Decimal(payment.amount))

    if refund > 0:
        await payment_service.refund_payment(
            db,
            gateway,
            actor,
            payment.id,
            amount=refund,
            reason=reason,
            cancel_booking=False,
        )

    booking = await _transition(
        db,
        booking,
        BookingStatus.CANCELLED,
        cancelled_by=actor.role if actor.role != "customer" else "user",
        cancellation_reason=reason,
        cancelled_at=now,
        refund_amount=refund,
    )
    if booking.payment_id is not None:
        await payment_service.cancel_open_payment(db, booking.payment_id)
    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        actor_id=actor.user_id,
        refund=str(refund),
    )
    await notification_service.emit(
        notification_service.BOOKING_CANCELLED,
        {**_event_payload(booking), "refund_amount": str(refund)},
        booking.branch_id,
    )
    return booking


async def confirm_booking(db: AsyncSession, booking_id: int, actor: Actor) -> Booking:
    """Staff confirmation of a pending booking without payment."""
    if not actor.is_staff:
        raise AuthorizationError("Only staff can confirm bookings")
    booking = await _load_booking(db, booking_id)
    booking = await _transition(
        db, booking, BookingStatus.CONFIRMED, confirmed_at=datetime.now(timezone.utc)
    )
    logger.info("booking_confirmed", booking_id=booking.id, actor_id=actor.user_id, channel="staff")
    await notification_service.emit(
        notification_service.BOOKING_CONFIRMED, _event_payload(booking), booking.branch_id
    )
    return booking


async def check_in(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    now: Optional[datetime] = None,
) -> Booking:
    now = _utc(now)
    booking = await get_booking(db, booking_id, actor)
    if booking.status != BookingStatus.CONFIRMED.value:
        raise ConflictError("Only confirmed bookings can be checked in", code="not_confirmed")
    if booking.checked_in_at is not None:
        raise ConflictError("Booking is already checked in", code="already_checked_in")

    start = await _booking_start(db, booking)
    window = timedelta(minutes=settings.CHECK_IN_WINDOW_MINUTES)
    if not within_check_in_window(start, now, window):
        raise ValidationError(
            f"Check-in is only possible within {settings.CHECK_IN_WINDOW_MINUTES} minutes of the booking time",
            code="outside_check_in_window",
        )

    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.checked_in_at.is_(None),
        )
        .values(checked_in_at=now, checked_in_by=actor.user_id, version=Booking.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Booking is already checked in", code="already_checked_in")
    await db.refresh(booking)
    logger.info("booking_checked_in", booking_id=booking.id, actor_id=actor.user_id)
    return booking


async def complete_booking(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    now: Optional[datetime] = None,
) -> Booking:
    """Close out a confirmed booking once its slot has started."""
    if not actor.is_staff:
        raise AuthorizationError("Only staff can complete bookings")
    now = _utc(now)
    booking = await _load_booking(db, booking_id)
    ensure_transition(booking.status, BookingStatus.COMPLETED)
    if now < await _booking_start(db, booking):
        raise ValidationError("Booking cannot be completed before it starts", code="slot_not_started")

    booking = await _transition(db, booking, BookingStatus.COMPLETED, completed_at=now)
    logger.info("booking_completed", booking_id=booking.id, actor_id=actor.user_id)
    await notification_service.emit(
        notification_service.BOOKING_COMPLETED, _event_payload(booking), booking.branch_id
    )
    return booking


async def rate_booking(db: AsyncSession, booking_id: int, actor: Actor, rating: BookingRate) -> Booking:
    booking = await _load_booking(db, booking_id)
    if booking.user_id != actor.user_id:
        raise AuthorizationError("Only the guest who made the booking can rate it")
    if booking.status != BookingStatus.COMPLETED.value:
        raise ConflictError("Only completed bookings can be rated", code="not_completed")
    if booking.is_rated:
        raise ConflictError("Booking has already been rated", code="already_rated")

    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.rated_at.is_(None))
        .values(
            rating_food=rating.food,
            rating_service=rating.service,
            rating_ambiance=rating.ambiance,
            rating_overall=rating.overall,
            review=rating.review,
            rated_at=datetime.now(timezone.utc),
            version=Booking.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Booking has already been rated", code="already_rated")
    await db.refresh(booking)
    logger.info("booking_rated", booking_id=booking.id, overall=rating.overall)
    return booking


async def list_user_bookings(
    db: AsyncSession,
    actor: Actor,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Booking], int]:
    """Get the actor's bookings, newest slot first."""
    query = select(Booking).where(Booking.user_id == actor.user_id)
    count_query = select(func.count(Booking.id)).where(Booking.user_id == actor.user_id)
    if status:
        query = query.where(Booking.status == status)
        count_query = count_query.where(Booking.status == status)

    total = await db.scalar(count_query)
    result = await db.execute(
        query.order_by(Booking.booking_date.desc(), Booking.start_time.desc(), Booking.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total or 0
