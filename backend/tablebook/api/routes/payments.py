"""
Payment endpoints: gateway orders, checkout verification, webhooks and refunds.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tablebook.core.config import get_settings
from tablebook.core.security import Actor, get_current_actor
from tablebook.db.session import get_db
from tablebook.schemas.payment import (
    PaymentListResponse,
    PaymentOrderCreate,
    PaymentOrderResponse,
    PaymentRefund,
    PaymentResponse,
    PaymentVerify,
    WebhookAck,
)
from tablebook.services import payment_service
from tablebook.services.gateway_factory import get_gateway
from tablebook.services.interfaces.gateway import PaymentGateway

settings = get_settings()
router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/create-order", response_model=PaymentOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: PaymentOrderCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Open a gateway order for a pending booking."""
    payment = await payment_service.create_order(
        db, gateway, actor, order_data.booking_id, order_data.amount, order_data.currency
    )
    await db.commit()
    return PaymentOrderResponse(
        payment_id=payment.id,
        reference=payment.reference,
        order_id=payment.gateway_order_id,
        amount=payment.amount,
        currency=payment.currency,
        key_id=settings.RAZORPAY_KEY_ID if gateway.name == "razorpay" else None,
    )


@router.post("/verify", response_model=PaymentResponse)
async def verify_payment(
    verify_data: PaymentVerify,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Checkout callback relayed by the client.

    Safe to call more than once: a payment that is already completed is
    returned unchanged and loyalty points are never credited twice.
    """
    payment = await payment_service.verify_payment(
        db, gateway, actor, verify_data.order_id, verify_data.payment_id, verify_data.signature
    )
    await db.commit()
    return payment


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    x_razorpay_event_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Server-to-server gateway notifications. Signed over the raw body."""
    raw_body = await request.body()
    ack = await payment_service.process_webhook(
        db, gateway, raw_body, x_razorpay_signature, x_razorpay_event_id
    )
    await db.commit()
    return ack


@router.post("/refund", response_model=PaymentResponse)
async def refund_payment(
    refund_data: PaymentRefund,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    payment = await payment_service.refund_payment(
        db,
        gateway,
        actor,
        refund_data.payment_id,
        amount=refund_data.amount,
        reason=refund_data.reason,
        method=refund_data.method,
    )
    await db.commit()
    return payment


@router.post("/{payment_id}/reconcile", response_model=PaymentResponse)
async def reconcile_payment(
    payment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Re-query the gateway for a payment stuck after a timeout or missed webhook."""
    payment = await payment_service.reconcile_payment(db, gateway, actor, payment_id)
    await db.commit()
    return payment


@router.get("/", response_model=PaymentListResponse)
async def list_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    payments, total = await payment_service.list_user_payments(db, actor, status_filter, limit, offset)
    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await payment_service.get_payment(db, payment_id, actor)
