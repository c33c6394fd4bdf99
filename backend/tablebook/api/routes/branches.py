"""
Branch availability endpoint.
"""

from datetime import date, time
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tablebook.db.session import get_db
from tablebook.domain.timeslot import TimeSlot, format_clock
from tablebook.schemas.availability import AvailabilityResponse, OperatingHours, TableResponse
from tablebook.services.availability_service import find_available_tables

router = APIRouter(prefix="/branches", tags=["Branches"])


@router.get("/{branch_id}/availability", response_model=AvailabilityResponse)
async def check_availability(
    branch_id: int,
    booking_date: date = Query(..., alias="date"),
    start_time: time = Query(...),
    end_time: time = Query(...),
    party_size: int = Query(..., gt=0, le=20),
    theme: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Tables that can seat the party for the slot.

    A closed day or a slot outside opening hours is a normal answer
    (available=false with a reason), not an error.
    """
    slot = TimeSlot(booking_date, start_time, end_time)
    result = await find_available_tables(db, branch_id, booking_date, slot, party_size, theme)
    schedule = result.schedule
    return AvailabilityResponse(
        branch_id=branch_id,
        date=booking_date.isoformat(),
        start_time=format_clock(slot.start),
        end_time=format_clock(slot.end),
        party_size=party_size,
        available=result.available,
        reason=result.reason,
        operating_hours=OperatingHours(
            is_open=bool(schedule and schedule.is_open),
            open=format_clock(schedule.open) if schedule and schedule.open else None,
            close=format_clock(schedule.close) if schedule and schedule.close else None,
        ),
        tables=[TableResponse.model_validate(t) for t in result.tables],
    )
