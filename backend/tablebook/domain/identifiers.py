"""
Human-readable reference generation.

References are minted explicitly before a record is constructed:
``<PREFIX><yymmdd><6 random digits>`` for bookings and payments, and a
millisecond timestamp plus random suffix for refunds.
"""

import secrets
from datetime import datetime, timezone
from typing import Optional


def _date_coded(prefix: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{prefix}{now:%y%m%d}{100000 + secrets.randbelow(900000)}"


def new_booking_reference(now: Optional[datetime] = None) -> str:
    return _date_coded("BK", now)


def new_payment_reference(now: Optional[datetime] = None) -> str:
    return _date_coded("PAY", now)


def new_refund_reference(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"REF{int(now.timestamp() * 1000)}{secrets.randbelow(1000):03d}"
