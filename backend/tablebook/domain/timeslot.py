"""
Time slots and operating hours.

A slot is a half-open interval [start, end) of clock times anchored to one
calendar date. Two slots that merely touch (a.end == b.start) do not overlap,
which is what allows back-to-back bookings on the same table.

Everything here is pure: no clock reads, no I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tablebook.core.exceptions import ValidationError

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_CLOCK_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def parse_clock(value: str) -> time:
    """Parse an ``HH:MM`` 24h clock string."""
    match = _CLOCK_RE.match(value or "")
    if not match:
        raise ValidationError(f"Time must be in HH:MM format, got {value!r}", code="invalid_time")
    return time(int(match.group(1)), int(match.group(2)))


def format_clock(value: time) -> str:
    return value.strftime("%H:%M")


@dataclass(frozen=True)
class TimeSlot:
    booking_date: date
    start: time
    end: time

    def __post_init__(self):
        if self.start >= self.end:
            raise ValidationError("End time must be after start time", code="invalid_slot")

    @classmethod
    def from_strings(cls, booking_date: date, start: str, end: str) -> "TimeSlot":
        return cls(booking_date, parse_clock(start), parse_clock(end))

    def starts_at(self, tz: Optional[tzinfo] = None) -> datetime:
        return datetime.combine(self.booking_date, self.start, tzinfo=tz)

    def ends_at(self, tz: Optional[tzinfo] = None) -> datetime:
        return datetime.combine(self.booking_date, self.end, tzinfo=tz)

    @property
    def duration_hours(self) -> float:
        return (self.ends_at() - self.starts_at()).total_seconds() / 3600

    def __str__(self) -> str:
        return f"{self.booking_date.isoformat()} {format_clock(self.start)}-{format_clock(self.end)}"


@dataclass(frozen=True)
class DaySchedule:
    is_open: bool
    open: Optional[time] = None
    close: Optional[time] = None

    def describe(self) -> str:
        if not self.is_open or self.open is None or self.close is None:
            return "closed"
        return f"{format_clock(self.open)} to {format_clock(self.close)}"


CLOSED = DaySchedule(is_open=False)


def overlaps(a: TimeSlot, b: TimeSlot) -> bool:
    if a.booking_date != b.booking_date:
        return False
    return a.start < b.end and b.start < a.end


def within_operating_hours(slot: TimeSlot, schedule: DaySchedule) -> bool:
    if not schedule.is_open or schedule.open is None or schedule.close is None:
        return False
    return slot.start >= schedule.open and slot.end <= schedule.close


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def day_schedule_for(operating_hours: Optional[Mapping], day: date) -> DaySchedule:
    """
    Resolve a branch's stored operating hours for one date.

    ``operating_hours`` maps lowercase weekday names to
    ``{"open": "HH:MM", "close": "HH:MM", "is_open": bool}``. A weekday that
    is missing, flagged closed, or has no hours is treated as closed.
    """
    entry = (operating_hours or {}).get(weekday_name(day))
    if not entry or not entry.get("is_open", True):
        return CLOSED
    if not entry.get("open") or not entry.get("close"):
        return CLOSED
    return DaySchedule(is_open=True, open=parse_clock(entry["open"]), close=parse_clock(entry["close"]))


def zone(name: Optional[str]) -> tzinfo:
    """Branch timezone, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc
