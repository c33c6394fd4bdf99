"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_serializer


class BookingItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(default=1, gt=0, le=50)
    menu_item_id: Optional[str] = Field(None, max_length=64)
    special_instructions: Optional[str] = Field(None, max_length=500)


class BookingCreate(BaseModel):
    branch_id: int
    table_id: int
    booking_date: date
    start_time: time
    end_time: time
    party_size: int = Field(..., gt=0, le=20)
    items: list[BookingItemCreate] = Field(default_factory=list)
    special_requests: Optional[str] = Field(None, max_length=500)
    offer_code: Optional[str] = Field(None, max_length=32)
    payment_method: Optional[str] = Field(None, max_length=20)


class BookingCancel(BaseModel):
    reason: str = Field(default="Cancelled by customer", min_length=1, max_length=200)


class BookingRate(BaseModel):
    food: int = Field(..., ge=1, le=5)
    service: int = Field(..., ge=1, le=5)
    ambiance: int = Field(..., ge=1, le=5)
    overall: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=500)


class BookingItemResponse(BaseModel):
    id: int
    name: str
    menu_item_id: Optional[str]
    unit_price: Decimal
    quantity: int

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    reference: str
    user_id: int
    branch_id: int
    table_id: int
    booking_date: date
    start_time: time
    end_time: time
    party_size: int
    status: str
    special_requests: Optional[str]
    subtotal_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    offer_id: Optional[int]
    payment_id: Optional[int]
    checked_in_at: Optional[datetime]
    cancelled_by: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    refund_amount: Optional[Decimal]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    rating_overall: Optional[int]
    review: Optional[str]
    items: list[BookingItemResponse] = []
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("start_time", "end_time")
    def serialize_clock(self, value: time) -> str:
        return value.strftime("%H:%M")


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    limit: int
    offset: int
