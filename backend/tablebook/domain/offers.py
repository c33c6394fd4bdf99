"""
Offer eligibility and discount arithmetic.

``offer`` and ``user`` are any objects exposing the Offer / User model
attributes; nothing here touches the database. Usage counters are read as
given, the service layer is responsible for incrementing them atomically.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from tablebook.domain.timeslot import weekday_name

TWO_PLACES = Decimal("0.01")


class OfferType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    BUY_ONE_GET_ONE = "buy_one_get_one"
    COMBO = "combo"
    LOYALTY = "loyalty"
    SEASONAL = "seasonal"
    HAPPY_HOUR = "happy_hour"


@dataclass(frozen=True)
class Applicability:
    ok: bool
    reason: Optional[str] = None


APPLICABLE = Applicability(ok=True)


def _reject(reason: str) -> Applicability:
    return Applicability(ok=False, reason=reason)


def is_currently_valid(offer, now: datetime) -> Applicability:
    """Activity, calendar window, daily window, weekdays and global cap."""
    if not offer.is_active:
        return _reject("Offer is not active")

    today = now.date()
    if today < offer.start_date or today > offer.end_date:
        return _reject("Offer is not currently valid")

    if offer.start_time is not None and offer.end_time is not None:
        clock = now.time().replace(second=0, microsecond=0, tzinfo=None)
        if clock < offer.start_time or clock > offer.end_time:
            return _reject("Offer is not valid at this time of day")

    days = offer.valid_days or []
    if days and weekday_name(today) not in [d.lower() for d in days]:
        return _reject("Offer is not valid on this day")

    if offer.max_uses is not None and offer.used_count >= offer.max_uses:
        return _reject("Offer usage limit has been reached")

    return APPLICABLE


def is_applicable(
    offer,
    user,
    order_amount: Decimal,
    party_size: int,
    now: datetime,
    user_use_count: int = 0,
    payment_method: Optional[str] = None,
) -> Applicability:
    """Return the first failing eligibility rule, or APPLICABLE."""
    validity = is_currently_valid(offer, now)
    if not validity.ok:
        return validity

    if Decimal(order_amount) < Decimal(offer.min_order_amount or 0):
        return _reject(f"Minimum order amount of {offer.min_order_amount} required")

    if party_size < offer.min_party_size or party_size > offer.max_party_size:
        return _reject(
            f"Party size must be between {offer.min_party_size} and {offer.max_party_size}"
        )

    if user_use_count >= offer.max_uses_per_user:
        return _reject("Maximum usage limit reached for this offer")

    tiers = offer.membership_tiers or []
    if tiers and getattr(user, "membership_tier", None) not in tiers:
        return _reject("Offer is limited to " + ", ".join(tiers) + " members")

    methods = offer.payment_methods or []
    if methods and payment_method is not None and payment_method not in methods:
        return _reject("Offer is not valid for this payment method")

    return APPLICABLE


def compute_discount(offer, order_amount: Decimal) -> Decimal:
    """
    Discount for an order, clamped to [0, order_amount].

    Only percentage and fixed offers carry real arithmetic. Combo offers take
    the flat value and every other type discounts nothing: line-item rules for
    them are not modelled.
    """
    order_amount = Decimal(order_amount)
    value = Decimal(offer.discount_value or 0)

    if offer.type == OfferType.PERCENTAGE:
        discount = order_amount * value / 100
        if offer.max_discount_amount is not None:
            discount = min(discount, Decimal(offer.max_discount_amount))
    elif offer.type in (OfferType.FIXED, OfferType.COMBO):
        discount = value
    else:
        discount = Decimal("0")

    discount = max(Decimal("0"), min(discount, order_amount))
    return discount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
