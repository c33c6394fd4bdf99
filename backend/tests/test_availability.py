"""
Tests for table availability lookups.
"""

import pytest
from httpx import AsyncClient

from tablebook.domain.timeslot import TimeSlot
from tablebook.models.table import Table
from tablebook.services.availability_service import find_available_tables, is_table_free


def _params(day, start="19:00", end="21:00", party_size=2, **extra) -> dict:
    params = {"date": day.isoformat(), "start_time": start, "end_time": end, "party_size": party_size}
    params.update(extra)
    return params


@pytest.mark.asyncio
async def test_free_tables_sorted_by_theme_then_seats(client: AsyncClient, branch, tables, booking_day):
    response = await client.get(f"/api/v1/branches/{branch.id}/availability", params=_params(booking_day))
    assert response.status_code == 200
    data = response.json()
    assert data["available"] is True
    assert data["operating_hours"] == {"is_open": True, "open": "10:00", "close": "23:00"}
    # Casual before Premium; within Casual the 2-seater comes first
    assert [t["table_number"] for t in data["tables"]] == ["3", "1", "2"]


@pytest.mark.asyncio
async def test_capacity_and_theme_filters(client: AsyncClient, branch, tables, booking_day):
    large = await client.get(
        f"/api/v1/branches/{branch.id}/availability", params=_params(booking_day, party_size=5)
    )
    assert [t["table_number"] for t in large.json()["tables"]] == ["2"]

    casual = await client.get(
        f"/api/v1/branches/{branch.id}/availability",
        params=_params(booking_day, theme="Casual"),
    )
    assert {t["theme"] for t in casual.json()["tables"]} == {"Casual"}


@pytest.mark.asyncio
async def test_booked_table_is_excluded(client: AsyncClient, make_booking, branch, tables, booking_day):
    branch_id = branch.id
    await make_booking("19:00", "21:00")

    overlapping = await client.get(
        f"/api/v1/branches/{branch_id}/availability", params=_params(booking_day, "20:00", "22:00")
    )
    assert [t["table_number"] for t in overlapping.json()["tables"]] == ["3", "2"]

    after = await client.get(
        f"/api/v1/branches/{branch_id}/availability", params=_params(booking_day, "21:00", "22:00")
    )
    assert [t["table_number"] for t in after.json()["tables"]] == ["3", "1", "2"]


@pytest.mark.asyncio
async def test_closed_day_is_an_answer_not_an_error(client: AsyncClient, branch, tables, closed_day):
    response = await client.get(f"/api/v1/branches/{branch.id}/availability", params=_params(closed_day))
    assert response.status_code == 200
    data = response.json()
    assert data["available"] is False
    assert data["tables"] == []
    assert data["reason"] == "Branch is closed on this day"
    assert data["operating_hours"]["is_open"] is False


@pytest.mark.asyncio
async def test_outside_hours_reports_the_hours(client: AsyncClient, branch, tables, booking_day):
    response = await client.get(
        f"/api/v1/branches/{branch.id}/availability", params=_params(booking_day, "08:00", "09:00")
    )
    data = response.json()
    assert data["available"] is False
    assert data["reason"] == "Branch is open from 10:00 to 23:00"


@pytest.mark.asyncio
async def test_unknown_branch_is_not_found(client: AsyncClient, booking_day):
    response = await client.get("/api/v1/branches/4242/availability", params=_params(booking_day))
    assert response.status_code == 404
    assert response.json()["error"] == "branch_not_found"


@pytest.mark.asyncio
async def test_unavailable_and_inactive_tables_are_skipped(db_session, branch, tables, booking_day):
    tables[0].is_available = False
    tables[2].is_active = False
    await db_session.commit()

    result = await find_available_tables(
        db_session, branch.id, booking_day, TimeSlot.from_strings(booking_day, "12:00", "13:00"), 2
    )
    assert [t.table_number for t in result.tables] == ["2"]


@pytest.mark.asyncio
async def test_is_table_free_ignores_excluded_booking(db_session, make_booking, table: Table, booking_day):
    table_id = table.id
    booking = await make_booking("19:00", "21:00")
    slot = TimeSlot.from_strings(booking_day, "20:00", "20:30")

    assert not await is_table_free(db_session, table_id, booking_day, slot)
    assert await is_table_free(db_session, table_id, booking_day, slot, exclude_booking_id=booking["id"])
