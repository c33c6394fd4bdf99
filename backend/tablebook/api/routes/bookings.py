"""
Booking endpoints with concurrency-safe table reservation.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tablebook.core.security import Actor, get_current_actor, get_staff_actor
from tablebook.db.session import get_db
from tablebook.schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingRate,
    BookingResponse,
)
from tablebook.services import booking_service
from tablebook.services.gateway_factory import get_gateway
from tablebook.services.interfaces.gateway import PaymentGateway

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserve a table for a time slot.

    Uses optimistic locking on the table's daily schedule so two overlapping
    requests cannot both succeed. The loser gets a 409.
    """
    booking = await booking_service.create_booking(db, actor, booking_data)
    await db.commit()
    return booking


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Get the authenticated user's bookings."""
    bookings, total = await booking_service.list_user_bookings(db, actor, status_filter, limit, offset)
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_booking(db, booking_id, actor)


@router.put("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    cancel_data: Optional[BookingCancel] = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Cancel a booking, refunding per the branch cancellation policy."""
    reason = cancel_data.reason if cancel_data else BookingCancel().reason
    booking = await booking_service.cancel_booking(db, gateway, booking_id, actor, reason)
    await db.commit()
    return booking


@router.put("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: int,
    actor: Actor = Depends(get_staff_actor),
    db: AsyncSession = Depends(get_db),
):
    """Staff confirmation without payment."""
    booking = await booking_service.confirm_booking(db, booking_id, actor)
    await db.commit()
    return booking


@router.post("/{booking_id}/checkin", response_model=BookingResponse)
async def check_in(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.check_in(db, booking_id, actor)
    await db.commit()
    return booking


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: int,
    actor: Actor = Depends(get_staff_actor),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.complete_booking(db, booking_id, actor)
    await db.commit()
    return booking


@router.post("/{booking_id}/rate", response_model=BookingResponse)
async def rate_booking(
    booking_id: int,
    rating: BookingRate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.rate_booking(db, booking_id, actor, rating)
    await db.commit()
    return booking
