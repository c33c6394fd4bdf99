"""
Offer lookup and quote endpoints. Neither records usage.
"""

from datetime import datetime, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tablebook.core.exceptions import NotFoundError
from tablebook.core.security import Actor, get_current_actor
from tablebook.db.session import get_db
from tablebook.domain.timeslot import zone
from tablebook.models.user import User
from tablebook.schemas.offer import OfferQuoteRequest, OfferQuoteResponse, OfferResponse
from tablebook.services import offer_service
from tablebook.services.availability_service import get_active_branch

router = APIRouter(prefix="/offers", tags=["Offers"])


async def _current_user(db: AsyncSession, actor: Actor) -> User:
    user = await db.get(User, actor.user_id) if actor.user_id is not None else None
    if user is None:
        raise NotFoundError("User not found", code="user_not_found")
    return user


@router.get("/applicable", response_model=list[OfferResponse])
async def applicable_offers(
    branch_id: int = Query(...),
    order_amount: Decimal = Query(..., ge=0),
    party_size: int = Query(1, gt=0, le=20),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Offers the caller could redeem right now, highest priority first."""
    branch = await get_active_branch(db, branch_id)
    user = await _current_user(db, actor)
    now = datetime.now(timezone.utc).astimezone(zone(branch.timezone))
    return await offer_service.find_applicable_offers(db, branch.id, user, order_amount, party_size, now)


@router.post("/quote", response_model=OfferQuoteResponse)
async def quote_offer(
    quote: OfferQuoteRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    branch = await get_active_branch(db, quote.branch_id)
    user = await _current_user(db, actor)
    offer = await offer_service.find_offer_by_code(db, quote.code, branch.id)
    now = datetime.now(timezone.utc).astimezone(zone(branch.timezone))

    verdict = await offer_service.check_offer(
        db, offer, user, quote.order_amount, quote.party_size, now, quote.payment_method
    )
    discount = offer_service.quote(offer, quote.order_amount) if verdict.ok else Decimal("0.00")
    return OfferQuoteResponse(
        offer_id=offer.id,
        code=offer.code,
        applicable=verdict.ok,
        reason=verdict.reason,
        order_amount=quote.order_amount,
        discount_amount=discount,
        final_amount=quote.order_amount - discount,
    )
