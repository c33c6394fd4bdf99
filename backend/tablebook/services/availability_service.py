"""
Table availability.

A table is free for a slot when no pending or confirmed booking on the same
table and date overlaps it. is_table_free is a plain read: the guarantee that
two concurrent creates cannot both pass it comes from the TableSchedule
version bump in booking_service, which runs in the same transaction.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tablebook.core.exceptions import NotFoundError
from tablebook.core.logging import get_logger
from tablebook.domain.booking_state import ACTIVE_BOOKING_STATUSES
from tablebook.domain.timeslot import (
    DaySchedule,
    TimeSlot,
    day_schedule_for,
    overlaps,
    within_operating_hours,
)
from tablebook.models.booking import Booking
from tablebook.models.branch import Branch
from tablebook.models.table import Table

logger = get_logger(__name__)


@dataclass
class AvailabilityResult:
    available: bool
    tables: list[Table] = field(default_factory=list)
    reason: Optional[str] = None
    schedule: Optional[DaySchedule] = None


def _booked_slot(booking: Booking) -> TimeSlot:
    return TimeSlot(booking.booking_date, booking.start_time, booking.end_time)


def has_conflict(slot: TimeSlot, bookings: list[Booking], exclude_booking_id: Optional[int] = None) -> bool:
    return any(
        overlaps(slot, _booked_slot(b))
        for b in bookings
        if b.id != exclude_booking_id
    )


async def get_active_branch(db: AsyncSession, branch_id: int) -> Branch:
    branch = await db.get(Branch, branch_id)
    if branch is None or not branch.is_active:
        raise NotFoundError("Branch not found or inactive", code="branch_not_found")
    return branch


async def is_table_free(
    db: AsyncSession,
    table_id: int,
    booking_date: date,
    slot: TimeSlot,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    result = await db.execute(
        select(Booking).where(
            Booking.table_id == table_id,
            Booking.booking_date == booking_date,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        ).execution_options(populate_existing=True)
    )
    return not has_conflict(slot, list(result.scalars().all()), exclude_booking_id)


def _table_sort_key(table: Table):
    number = table.table_number
    return (table.theme, table.seats, (0, int(number)) if number.isdigit() else (1, number))


async def find_available_tables(
    db: AsyncSession,
    branch_id: int,
    booking_date: date,
    slot: TimeSlot,
    party_size: int,
    theme: Optional[str] = None,
) -> AvailabilityResult:
    """
    Tables of a branch that can seat the party for the slot.

    Closed days and out-of-hours slots are reported through the result, not
    raised. Ordering: theme, then seats ascending (smallest sufficient table
    first), then table number.
    """
    branch = await get_active_branch(db, branch_id)

    schedule = day_schedule_for(branch.operating_hours, booking_date)
    if not schedule.is_open:
        return AvailabilityResult(available=False, reason="Branch is closed on this day", schedule=schedule)
    if not within_operating_hours(slot, schedule):
        return AvailabilityResult(
            available=False,
            reason=f"Branch is open from {schedule.describe()}",
            schedule=schedule,
        )

    query = select(Table).where(
        Table.branch_id == branch_id,
        Table.is_active.is_(True),
        Table.is_available.is_(True),
        Table.seats >= party_size,
    )
    if theme:
        query = query.where(Table.theme == theme)
    candidates = sorted((await db.execute(query)).scalars().all(), key=_table_sort_key)

    # One query for the whole branch/day instead of one per table
    bookings_by_table: dict[int, list[Booking]] = defaultdict(list)
    if candidates:
        result = await db.execute(
            select(Booking).where(
                Booking.table_id.in_([t.id for t in candidates]),
                Booking.booking_date == booking_date,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            ).execution_options(populate_existing=True)
        )
        for booking in result.scalars().all():
            bookings_by_table[booking.table_id].append(booking)

    free = [t for t in candidates if not has_conflict(slot, bookings_by_table[t.id])]

    logger.debug(
        "availability_checked",
        branch_id=branch_id,
        date=booking_date.isoformat(),
        candidates=len(candidates),
        free=len(free),
    )
    return AvailabilityResult(available=bool(free), tables=free, schedule=schedule)
