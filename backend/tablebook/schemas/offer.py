"""
Pydantic schemas for offer lookups and quotes.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class OfferResponse(BaseModel):
    id: int
    branch_id: int
    title: str
    code: Optional[str]
    type: str
    discount_value: Decimal
    max_discount_amount: Optional[Decimal]
    min_order_amount: Decimal
    start_date: date
    end_date: date
    max_uses: Optional[int]
    used_count: int
    max_uses_per_user: int
    priority: int

    model_config = {"from_attributes": True}


class OfferQuoteRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)
    branch_id: int
    order_amount: Decimal = Field(..., ge=0)
    party_size: int = Field(default=1, gt=0, le=20)
    payment_method: Optional[str] = Field(None, max_length=20)


class OfferQuoteResponse(BaseModel):
    offer_id: int
    code: str
    applicable: bool
    reason: Optional[str] = None
    order_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
