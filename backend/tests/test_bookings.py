"""
Tests for booking endpoints including concurrency scenarios.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from conftest import booking_payload
from tablebook.core.exceptions import ConflictError, ValidationError
from tablebook.core.security import Actor
from tablebook.models.booking import Booking
from tablebook.models.table import TableSchedule
from tablebook.schemas.booking import BookingCreate, BookingRate
from tablebook.services import availability_service, booking_service


@pytest.mark.asyncio
async def test_create_booking(client: AsyncClient, auth_headers, branch, table, booking_day):
    """Happy path: a free slot inside opening hours becomes a pending booking."""
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(branch.id, table.id, booking_day),
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["table_id"] == table.id
    assert data["start_time"] == "19:00"
    assert data["end_time"] == "21:00"
    assert data["reference"].startswith("BK")
    assert Decimal(data["subtotal_amount"]) == Decimal("500")
    assert Decimal(data["total_amount"]) == Decimal("500")
    assert data["payment_id"] is None
    assert len(data["items"]) == 1


@pytest.mark.asyncio
async def test_price_multiplier_applies_to_items(client: AsyncClient, auth_headers, branch, tables, booking_day):
    premium = tables[1]
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(branch.id, premium.id, booking_day, party_size=6),
        headers=auth_headers,
    )
    assert response.status_code == 201
    assert Decimal(response.json()["total_amount"]) == Decimal("750")


@pytest.mark.asyncio
async def test_create_booking_unauthenticated(client: AsyncClient, branch, table, booking_day):
    response = await client.post("/api/v1/bookings/", json=booking_payload(branch.id, table.id, booking_day))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_overlapping_booking_rejected(
    client: AsyncClient, make_booking, other_headers, branch, table, booking_day
):
    """19:00-21:00 is held; 19:00-19:30 on the same table must be refused."""
    overlapping = booking_payload(branch.id, table.id, booking_day, "19:00", "19:30")
    await make_booking("19:00", "21:00")

    response = await client.post(
        "/api/v1/bookings/",
        json=overlapping,
        headers=other_headers,
    )
    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "slot_unavailable"
    assert "not available" in body["message"]


@pytest.mark.asyncio
async def test_back_to_back_bookings_allowed(make_booking, other_headers):
    """19:00-20:00 then 20:00-21:00 touch but do not overlap."""
    first = await make_booking("19:00", "20:00")
    second = await make_booking("20:00", "21:00", headers=other_headers)
    assert first["table_id"] == second["table_id"]
    assert second["status"] == "pending"


@pytest.mark.asyncio
async def test_cancelled_booking_frees_the_slot(client: AsyncClient, make_booking, auth_headers, other_headers):
    booking = await make_booking("19:00", "21:00")
    cancel = await client.put(f"/api/v1/bookings/{booking['id']}/cancel", headers=auth_headers)
    assert cancel.status_code == 200

    rebooked = await make_booking("19:30", "20:30", headers=other_headers)
    assert rebooked["status"] == "pending"


@pytest.mark.asyncio
async def test_party_larger_than_table_rejected(client: AsyncClient, auth_headers, branch, table, booking_day):
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(branch.id, table.id, booking_day, party_size=6),
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "party_too_large"


@pytest.mark.asyncio
async def test_closed_day_rejected(client: AsyncClient, auth_headers, branch, table, closed_day):
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(branch.id, table.id, closed_day),
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "branch_closed"


@pytest.mark.asyncio
async def test_outside_operating_hours_rejected(client: AsyncClient, auth_headers, branch, table, booking_day):
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(branch.id, table.id, booking_day, start="22:00", end="23:30"),
        headers=auth_headers,
    )
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "outside_operating_hours"
    assert "10:00 to 23:00" in body["message"]


@pytest.mark.asyncio
async def test_past_slot_rejected(client: AsyncClient, auth_headers, branch, table, booking_day):
    last_week = booking_day - timedelta(days=14)
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(branch.id, table.id, last_week),
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "slot_in_past"


@pytest.mark.asyncio
async def test_unknown_branch_and_table(client: AsyncClient, auth_headers, branch, table, booking_day):
    branch_id, table_id = branch.id, table.id
    missing_branch = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(9999, table_id, booking_day),
        headers=auth_headers,
    )
    assert missing_branch.status_code == 404
    assert missing_branch.json()["error"] == "branch_not_found"

    missing_table = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(branch_id, 9999, booking_day),
        headers=auth_headers,
    )
    assert missing_table.status_code == 404
    assert missing_table.json()["error"] == "table_not_found"


@pytest.mark.asyncio
async def test_invalid_slot_order_rejected(client: AsyncClient, auth_headers, branch, table, booking_day):
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(branch.id, table.id, booking_day, start="21:00", end="19:00"),
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_slot"


@pytest.mark.asyncio
async def test_lost_race_surfaces_as_slot_conflict(db_session, customer, other_customer, branch, table, booking_day, monkeypatch):
    """
    Simulate the check-then-create race deterministically.

    The first availability check returns a stale "free" after a competing
    transaction has booked the same slot and bumped the schedule version.
    The version compare-and-set fails, the retry sees the competitor's
    booking and the request ends in a conflict instead of a double-booking.
    """
    real_is_table_free = availability_service.is_table_free
    calls = {"n": 0}
    table_id, branch_id, rival_id = table.id, branch.id, other_customer.id

    async def racing_is_table_free(db, tid, booking_date, slot, exclude_booking_id=None):
        calls["n"] += 1
        if calls["n"] == 1:
            db.add(
                Booking(
                    reference="BKRIVAL000001",
                    user_id=rival_id,
                    branch_id=branch_id,
                    table_id=tid,
                    booking_date=booking_date,
                    start_time=time(19, 0),
                    end_time=time(21, 0),
                    party_size=2,
                    status="pending",
                    version=1,
                )
            )
            await db.flush()
            schedule = (
                await db.execute(
                    select(TableSchedule).where(
                        TableSchedule.table_id == tid, TableSchedule.booking_date == booking_date
                    )
                )
            ).scalar_one()
            schedule.version += 1
            await db.flush()
            return True
        return await real_is_table_free(db, tid, booking_date, slot, exclude_booking_id)

    monkeypatch.setattr(availability_service, "is_table_free", racing_is_table_free)

    request = BookingCreate(
        branch_id=branch_id,
        table_id=table_id,
        booking_date=booking_day,
        start_time=time(19, 30),
        end_time=time(20, 30),
        party_size=2,
    )
    with pytest.raises(ConflictError) as exc:
        await booking_service.create_booking(db_session, Actor(user_id=customer.id), request)

    assert exc.value.code == "slot_unavailable"
    assert calls["n"] == 2

    active = await db_session.scalar(
        select(func.count(Booking.id)).where(Booking.table_id == table_id, Booking.status == "pending")
    )
    assert active == 1


@pytest.mark.asyncio
async def test_persistent_contention_gives_up(db_session, customer, branch, table, booking_day, monkeypatch):
    """If every compare-and-set loses, the request fails after the retry budget."""
    async def always_bumped(db, tid, booking_date, slot, exclude_booking_id=None):
        schedule = (
            await db.execute(
                select(TableSchedule).where(
                    TableSchedule.table_id == tid, TableSchedule.booking_date == booking_date
                )
            )
        ).scalar_one()
        schedule.version += 1
        await db.flush()
        return True

    monkeypatch.setattr(availability_service, "is_table_free", always_bumped)

    request = BookingCreate(
        branch_id=branch.id,
        table_id=table.id,
        booking_date=booking_day,
        start_time=time(12, 0),
        end_time=time(13, 0),
        party_size=2,
    )
    with pytest.raises(ConflictError) as exc:
        await booking_service.create_booking(db_session, Actor(user_id=customer.id), request)
    assert exc.value.code == "schedule_contention"


@pytest.mark.asyncio
async def test_list_and_get_bookings(client: AsyncClient, make_booking, auth_headers, other_headers):
    first = await make_booking("12:00", "13:00")
    await make_booking("19:00", "20:00")

    listing = await client.get("/api/v1/bookings/", headers=auth_headers)
    assert listing.status_code == 200
    assert listing.json()["total"] == 2

    own = await client.get(f"/api/v1/bookings/{first['id']}", headers=auth_headers)
    assert own.status_code == 200

    foreign = await client.get(f"/api/v1/bookings/{first['id']}", headers=other_headers)
    assert foreign.status_code == 403

    empty = await client.get("/api/v1/bookings/", headers=other_headers)
    assert empty.json()["total"] == 0


@pytest.mark.asyncio
async def test_confirm_requires_staff(client: AsyncClient, make_booking, auth_headers, admin_headers):
    booking = await make_booking()

    denied = await client.put(f"/api/v1/bookings/{booking['id']}/confirm", headers=auth_headers)
    assert denied.status_code == 403

    confirmed = await client.put(f"/api/v1/bookings/{booking['id']}/confirm", headers=admin_headers)
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"

    again = await client.put(f"/api/v1/bookings/{booking['id']}/confirm", headers=admin_headers)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_cancel_twice_conflicts(client: AsyncClient, make_booking, auth_headers):
    booking = await make_booking()
    first = await client.put(
        f"/api/v1/bookings/{booking['id']}/cancel",
        json={"reason": "Plans changed"},
        headers=auth_headers,
    )
    assert first.status_code == 200
    data = first.json()
    assert data["status"] == "cancelled"
    assert data["cancellation_reason"] == "Plans changed"
    assert data["cancelled_by"] == "user"
    assert Decimal(data["refund_amount"]) == Decimal("0")

    second = await client.put(f"/api/v1/bookings/{booking['id']}/cancel", headers=auth_headers)
    assert second.status_code == 409


@pytest.mark.asyncio
async def test_check_in_complete_and_rate(db_session, customer, admin, make_booking, admin_headers):
    """Confirmed -> checked in near the slot start -> completed -> rated once."""
    booking = await make_booking()
    booking_id = booking["id"]
    customer_actor = Actor(user_id=customer.id)
    admin_actor = Actor(user_id=admin.id, role="admin")

    await booking_service.confirm_booking(db_session, booking_id, admin_actor)
    start = datetime.combine(
        date.fromisoformat(booking["booking_date"]), time(19, 0), tzinfo=timezone.utc
    )

    with pytest.raises(ValidationError) as early:
        await booking_service.check_in(db_session, booking_id, customer_actor, now=start - timedelta(hours=2))
    assert early.value.code == "outside_check_in_window"

    checked = await booking_service.check_in(
        db_session, booking_id, customer_actor, now=start - timedelta(minutes=10)
    )
    assert checked.checked_in_at is not None
    assert checked.checked_in_by == customer.id

    with pytest.raises(ConflictError) as twice:
        await booking_service.check_in(db_session, booking_id, customer_actor, now=start)
    assert twice.value.code == "already_checked_in"

    with pytest.raises(ValidationError) as not_started:
        await booking_service.complete_booking(db_session, booking_id, admin_actor, now=start - timedelta(minutes=5))
    assert not_started.value.code == "slot_not_started"

    completed = await booking_service.complete_booking(
        db_session, booking_id, admin_actor, now=start + timedelta(hours=2)
    )
    assert completed.status == "completed"
    await db_session.commit()


    rating = BookingRate(food=5, service=4, ambiance=5, overall=5, review="Lovely evening")
    rated = await booking_service.rate_booking(db_session, booking_id, customer_actor, rating)
    assert rated.rating_overall == 5
    assert rated.is_rated

    with pytest.raises(ConflictError) as rerate:
        await booking_service.rate_booking(db_session, booking_id, customer_actor, rating)
    assert rerate.value.code == "already_rated"


@pytest.mark.asyncio
async def test_rating_requires_completed_booking(client: AsyncClient, make_booking, auth_headers):
    booking = await make_booking()
    response = await client.post(
        f"/api/v1/bookings/{booking['id']}/rate",
        json={"food": 5, "service": 5, "ambiance": 5, "overall": 5},
        headers=auth_headers,
    )
    assert response.status_code == 409
    assert response.json()["error"] == "not_completed"

