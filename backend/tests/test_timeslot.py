"""
Tests for the time-slot model and operating hours resolution.
"""

from datetime import date, time, timezone

import pytest

from tablebook.core.exceptions import ValidationError
from tablebook.domain.timeslot import (
    CLOSED,
    DaySchedule,
    TimeSlot,
    day_schedule_for,
    overlaps,
    parse_clock,
    within_operating_hours,
    zone,
)

DAY = date(2030, 3, 4)  # a Monday


def slot(start: str, end: str, day: date = DAY) -> TimeSlot:
    return TimeSlot.from_strings(day, start, end)


def test_overlapping_slots_conflict():
    assert overlaps(slot("19:00", "21:00"), slot("19:30", "20:00"))
    assert overlaps(slot("19:30", "20:00"), slot("19:00", "21:00"))
    assert overlaps(slot("18:00", "19:30"), slot("19:00", "21:00"))


def test_touching_slots_do_not_overlap():
    """Back-to-back bookings share a boundary but not a minute."""
    assert not overlaps(slot("19:00", "20:00"), slot("20:00", "21:00"))
    assert not overlaps(slot("20:00", "21:00"), slot("19:00", "20:00"))


def test_slots_on_different_days_never_overlap():
    assert not overlaps(slot("19:00", "21:00"), slot("19:00", "21:00", date(2030, 3, 5)))


def test_slot_requires_start_before_end():
    with pytest.raises(ValidationError) as exc:
        slot("21:00", "19:00")
    assert exc.value.code == "invalid_slot"

    with pytest.raises(ValidationError):
        slot("19:00", "19:00")


@pytest.mark.parametrize("value", ["7pm", "24:00", "19:60", "", "19-00"])
def test_parse_clock_rejects_malformed_values(value):
    with pytest.raises(ValidationError):
        parse_clock(value)


def test_parse_clock_accepts_single_digit_hour():
    assert parse_clock("9:05") == time(9, 5)


def test_within_operating_hours_is_inclusive_of_open_and_close():
    schedule = DaySchedule(is_open=True, open=time(10, 0), close=time(23, 0))
    assert within_operating_hours(slot("10:00", "23:00"), schedule)
    assert not within_operating_hours(slot("09:30", "11:00"), schedule)
    assert not within_operating_hours(slot("22:00", "23:30"), schedule)
    assert not within_operating_hours(slot("12:00", "13:00"), CLOSED)


def test_day_schedule_resolution():
    hours = {
        "monday": {"open": "10:00", "close": "23:00", "is_open": True},
        "tuesday": {"open": "10:00", "close": "23:00", "is_open": False},
    }
    monday = day_schedule_for(hours, DAY)
    assert monday.is_open
    assert monday.describe() == "10:00 to 23:00"

    assert day_schedule_for(hours, date(2030, 3, 5)) == CLOSED
    # Wednesday is missing entirely
    assert day_schedule_for(hours, date(2030, 3, 6)) == CLOSED
    assert day_schedule_for(None, DAY) == CLOSED


def test_starts_at_anchors_slot_in_branch_timezone():
    kolkata = zone("Asia/Kolkata")
    start = slot("19:00", "21:00").starts_at(kolkata)
    assert start.astimezone(timezone.utc).hour == 13
    assert start.astimezone(timezone.utc).minute == 30


def test_unknown_timezone_falls_back_to_utc():
    assert zone("Mars/Olympus_Mons") is timezone.utc
    assert slot("19:00", "21:00").duration_hours == 2
