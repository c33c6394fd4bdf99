"""
Offer evaluation and redemption.

CONCURRENCY STRATEGY: Guarded Atomic Increments
===============================================

Problem:
  An offer with max_uses=100 has used_count=99. Two bookings apply it at the
  same moment; both read 99, both write 100. The offer is redeemed 101 times.

Solution:
  The cap lives in the WHERE clause of the increment itself:

    UPDATE offers SET used_count = used_count + 1
    WHERE id = :id AND (max_uses IS NULL OR used_count < max_uses)

  The database serialises the two updates on the row; the second one
  re-evaluates the predicate, matches nothing, and rowcount == 0 tells us we
  lost. Per-user limits use the same pattern on offer_usages. Everything runs
  inside the caller's transaction, so a later failure in booking creation
  rolls the redemption back with it.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tablebook.core.exceptions import NotFoundError, OfferNotApplicable
from tablebook.core.logging import get_logger
from tablebook.core.metrics import record_offer_redemption
from tablebook.db.statements import insert_ignore
from tablebook.domain.offers import Applicability, compute_discount, is_applicable
from tablebook.models.offer import Offer, OfferUsage
from tablebook.models.user import User

logger = get_logger(__name__)


async def find_offer_by_code(db: AsyncSession, code: str, branch_id: Optional[int] = None) -> Offer:
    result = await db.execute(select(Offer).where(Offer.code == code.strip().upper()))
    offer = result.scalar_one_or_none()
    if offer is None or (branch_id is not None and offer.branch_id != branch_id):
        raise NotFoundError("Offer not found", code="offer_not_found")
    return offer


async def get_user_use_count(db: AsyncSession, offer_id: int, user_id: int) -> int:
    result = await db.execute(
        select(OfferUsage.count).where(OfferUsage.offer_id == offer_id, OfferUsage.user_id == user_id)
    )
    return result.scalar_one_or_none() or 0


async def check_offer(
    db: AsyncSession,
    offer: Offer,
    user: User,
    order_amount: Decimal,
    party_size: int,
    now: datetime,
    payment_method: Optional[str] = None,
) -> Applicability:
    """Evaluate eligibility without recording anything."""
    used = await get_user_use_count(db, offer.id, user.id)
    return is_applicable(offer, user, order_amount, party_size, now, used, payment_method)


async def find_applicable_offers(
    db: AsyncSession,
    branch_id: int,
    user: User,
    order_amount: Decimal,
    party_size: int,
    now: datetime,
) -> list[Offer]:
    """Offers the user could redeem right now, best first."""
    today = now.date()
    result = await db.execute(
        select(Offer)
        .where(
            Offer.branch_id == branch_id,
            Offer.is_active.is_(True),
            Offer.start_date <= today,
            Offer.end_date >= today,
        )
        .order_by(Offer.priority.desc(), Offer.conversions.desc(), Offer.id)
    )
    offers = []
    for offer in result.scalars().all():
        if (await check_offer(db, offer, user, order_amount, party_size, now)).ok:
            offers.append(offer)
    return offers


async def _increment_user_usage(db: AsyncSession, offer: Offer, user_id: int, now: datetime) -> bool:
    created = await db.execute(
        insert_ignore(
            db,
            OfferUsage,
            {"offer_id": offer.id, "user_id": user_id, "count": 1, "last_used_at": now},
            ["offer_id", "user_id"],
        )
    )
    if created.rowcount == 1:
        return True

    incremented = await db.execute(
        update(OfferUsage)
        .where(
            OfferUsage.offer_id == offer.id,
            OfferUsage.user_id == user_id,
            OfferUsage.count < offer.max_uses_per_user,
        )
        .values(count=OfferUsage.count + 1, last_used_at=now)
        .execution_options(synchronize_session=False)
    )
    return incremented.rowcount == 1


async def apply_offer(
    db: AsyncSession,
    offer: Offer,
    user: User,
    order_amount: Decimal,
    party_size: int,
    now: Optional[datetime] = None,
    payment_method: Optional[str] = None,
) -> Offer:
    """
    Redeem an offer once for ``user``.

    Re-validates eligibility, then increments the global and per-user
    counters and the analytics totals. Raises OfferNotApplicable with the
    failing reason; a lost race near the cap is reported the same way.
    """
    now = now or datetime.now(timezone.utc)

    verdict = await check_offer(db, offer, user, order_amount, party_size, now, payment_method)
    if not verdict.ok:
        record_offer_redemption(applied=False)
        raise OfferNotApplicable(verdict.reason, offer_id=offer.id)

    final_amount = Decimal(order_amount) - compute_discount(offer, order_amount)
    claimed = await db.execute(
        update(Offer)
        .where(
            Offer.id == offer.id,
            or_(Offer.max_uses.is_(None), Offer.used_count < Offer.max_uses),
        )
        .values(
            used_count=Offer.used_count + 1,
            conversions=Offer.conversions + 1,
            revenue=Offer.revenue + final_amount,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        record_offer_redemption(applied=False)
        logger.info("offer_cap_race_lost", offer_id=offer.id, user_id=user.id)
        raise OfferNotApplicable("Offer usage limit has been reached", offer_id=offer.id)

    if not await _increment_user_usage(db, offer, user.id, now):
        record_offer_redemption(applied=False)
        raise OfferNotApplicable("Maximum usage limit reached for this offer", offer_id=offer.id)

    await db.refresh(offer)
    record_offer_redemption(applied=True)
    logger.info(
        "offer_applied",
        offer_id=offer.id,
        user_id=user.id,
        order_amount=str(order_amount),
        used_count=offer.used_count,
    )
    return offer


def quote(offer: Offer, order_amount: Decimal) -> Decimal:
    return compute_discount(offer, order_amount)
