"""
Pydantic schemas for payment-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class PaymentOrderCreate(BaseModel):
    booking_id: int
    amount: Optional[Decimal] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class PaymentOrderResponse(BaseModel):
    payment_id: int
    reference: str
    order_id: str
    amount: Decimal
    currency: str
    key_id: Optional[str] = None


class PaymentVerify(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=64)
    payment_id: str = Field(..., min_length=1, max_length=64)
    signature: str = Field(..., min_length=1, max_length=128)


class PaymentRefund(BaseModel):
    payment_id: int
    amount: Optional[Decimal] = Field(None, gt=0)
    reason: str = Field(default="requested_by_customer", min_length=1, max_length=200)
    method: str = Field(default="original", pattern="^(original|wallet|bank_transfer)$")


class PaymentResponse(BaseModel):
    id: int
    reference: str
    booking_id: int
    user_id: int
    amount: Decimal
    currency: str
    method: str
    status: str
    gateway_order_id: Optional[str]
    gateway_payment_id: Optional[str]
    transaction_id: Optional[str]
    processed_at: Optional[datetime]
    failure_reason: Optional[str]
    gateway_fee: Decimal
    loyalty_points_awarded: int
    refund_reference: Optional[str]
    refund_amount: Optional[Decimal]
    refund_reason: Optional[str] = None
    refund_status: Optional[str]
    refund_failure_reason: Optional[str] = None
    refunded_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentListResponse(BaseModel):
    payments: list[PaymentResponse]
    total: int
    limit: int
    offset: int


class WebhookAck(BaseModel):
    status: str
    result: str
    event: str
