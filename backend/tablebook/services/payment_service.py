"""
Payment reconciliation engine.

Keeps the local Payment/Booking lifecycle in step with the gateway across
four channels: order creation, the client-relayed verify callback, the
server-to-server webhook, and refunds (plus an explicit reconcile that
re-queries the gateway when local state is ambiguous).

CONCURRENCY STRATEGY: Conditional Transitions
=============================================

Verify and webhook routinely race each other for the same capture. Every
terminal transition is a single conditional UPDATE:

  UPDATE payments SET status = 'completed', ...
  WHERE id = :id AND status IN ('pending', 'processing', 'failed')

Exactly one caller sees rowcount == 1 and runs the side effects (booking
confirmation, loyalty credit, events). Everyone else gets the already
completed payment back, which is what makes verify idempotent.

The gateway is never retried here. A timeout never marks anything
completed; reconcile_payment is the way back to a known state.

Cancelling a booking cancels its unsettled payment. If the gateway still
captures it afterwards, the capture is refunded rather than completed.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import exc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tablebook.core.config import get_settings
from tablebook.core.exceptions import (
    AuthorizationError,
    ConflictError,
    GatewayError,
    IntegrityError,
    NotFoundError,
    SignatureError,
    ValidationError,
)
from tablebook.core.logging import get_logger
from tablebook.core.metrics import record_booking_transition, record_payment_transition, record_webhook
from tablebook.core.security import ROLE_SYSTEM, Actor
from tablebook.db.statements import insert_ignore
from tablebook.domain.booking_state import (
    ACTIVE_BOOKING_STATUSES,
    COMPLETABLE_PAYMENT_STATUSES,
    FAILABLE_PAYMENT_STATUSES,
    BookingStatus,
    PaymentStatus,
    RefundStatus,
    loyalty_points_for,
)
from tablebook.domain.identifiers import new_payment_reference, new_refund_reference
from tablebook.domain.signatures import verify_payment_signature, verify_webhook_signature
from tablebook.infrastructure.razorpay_client import parse_payment_entity
from tablebook.models.booking import Booking
from tablebook.models.payment import Payment, WebhookEvent
from tablebook.models.user import User
from tablebook.services import notification_service
from tablebook.services.interfaces.gateway import (
    REMOTE_CAPTURED,
    REMOTE_FAILED,
    PaymentGateway,
    RemotePayment,
)

logger = get_logger(__name__)
settings = get_settings()

# Webhook event types
PAYMENT_CAPTURED = "payment.captured"
PAYMENT_FAILED = "payment.failed"
REFUND_CREATED = "refund.created"
HANDLED_EVENTS = (PAYMENT_CAPTURED, PAYMENT_FAILED, REFUND_CREATED)

MIN_ORDER_AMOUNT = Decimal("1")
EVENT_TYPE_MAX_LENGTH = 64
EVENT_ID_MAX_LENGTH = 64
STRAY_CAPTURE_REASON = "booking_cancelled"

# A cancelled payment is still watched: a capture that lands after the
# booking was cancelled has to be refunded.
RECONCILABLE_PAYMENT_STATUSES = COMPLETABLE_PAYMENT_STATUSES + (PaymentStatus.CANCELLED.value,)


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _load_payment(db: AsyncSession, payment_id: int) -> Payment:
    payment = await db.get(Payment, payment_id, populate_existing=True)
    if payment is None:
        raise NotFoundError("Payment not found", code="payment_not_found")
    return payment


async def _payment_by_order(db: AsyncSession, order_id: str) -> Optional[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.gateway_order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _linked_booking(db: AsyncSession, payment: Payment) -> Booking:
    booking = await db.get(Booking, payment.booking_id, populate_existing=True)
    if booking is None:
        raise IntegrityError(
            "Payment references a booking that does not exist",
            payment_id=payment.id,
            booking_id=payment.booking_id,
        )
    return booking


# ---------------------------------------------------------------------------
# Order creation
# ---------------------------------------------------------------------------


async def create_order(
    db: AsyncSession,
    gateway: PaymentGateway,
    actor: Actor,
    booking_id: int,
    amount: Optional[Decimal] = None,
    currency: Optional[str] = None,
) -> Payment:
    """
    Open a gateway order for a pending booking and record a pending Payment.

    If the gateway call fails nothing is written locally. The booking link is
    claimed with ``WHERE payment_id IS NULL`` so two concurrent calls cannot
    both attach a payment.
    """
    booking = await db.get(Booking, booking_id, populate_existing=True)
    if booking is None:
        raise NotFoundError("Booking not found", code="booking_not_found")
    if booking.user_id != actor.user_id:
        raise AuthorizationError("You can only pay for your own bookings")
    if booking.status != BookingStatus.PENDING.value:
        raise ConflictError("Only pending bookings can be paid", code="booking_not_pending")
    if booking.payment_id is not None:
        raise ConflictError("Payment already exists for this booking", code="payment_exists")

    if amount is None:
        amount = Decimal(booking.total_amount)
        if amount <= 0:
            raise ValidationError("Booking has nothing to pay; an amount is required", code="nothing_to_pay")
    amount = Decimal(amount)
    if amount < MIN_ORDER_AMOUNT:
        raise ValidationError(f"Amount must be at least {MIN_ORDER_AMOUNT}", code="invalid_amount")
    currency = (currency or settings.DEFAULT_CURRENCY).upper()

    reference = new_payment_reference()
    remote = await gateway.create_remote_order(
        amount,
        currency,
        reference,
        {"booking_id": booking.id, "booking_reference": booking.reference, "user_id": actor.user_id},
    )

    payment = Payment(
        reference=reference,
        booking_id=booking.id,
        user_id=booking.user_id,
        amount=amount,
        currency=currency,
        method=gateway.name,
        status=PaymentStatus.PENDING.value,
        gateway=gateway.name,
        gateway_order_id=remote.id,
    )
    db.add(payment)
    try:
        await db.flush()
    except exc.IntegrityError as e:
        raise ConflictError("Payment already exists for this booking", code="payment_exists") from e

    linked = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.payment_id.is_(None),
            Booking.status == BookingStatus.PENDING.value,
        )
        .values(payment_id=payment.id)
        .execution_options(synchronize_session=False)
    )
    if linked.rowcount == 0:
        raise ConflictError("Payment already exists for this booking", code="payment_exists")

    await db.refresh(payment)
    record_payment_transition(PaymentStatus.PENDING.value, "order")
    logger.info(
        "payment_order_created",
        payment_id=payment.id,
        booking_id=booking.id,
        order_id=remote.id,
        amount=str(amount),
        gateway=gateway.name,
    )
    return payment


# ---------------------------------------------------------------------------
# Transitions shared by verify, webhook and reconcile
# ---------------------------------------------------------------------------


def _remote_mismatch(payment: Payment, remote: RemotePayment) -> Optional[str]:
    """Describe how the gateway's amount/currency differs from ours, if it does."""
    if remote.amount is not None and Decimal(remote.amount) != Decimal(payment.amount):
        return f"Gateway reported amount {remote.amount}, expected {payment.amount}"
    if remote.currency and remote.currency.upper() != payment.currency.upper():
        return f"Gateway reported currency {remote.currency}, expected {payment.currency}"
    return None


def _capture_values(remote: RemotePayment, now: datetime) -> dict[str, Any]:
    return {
        "gateway_payment_id": remote.id,
        "gateway_response": remote.raw or None,
        "transaction_id": remote.id,
        "transaction_date": remote.captured_at or now,
        "processed_at": now,
        "gateway_fee": remote.fee,
        "failure_reason": None,
    }


async def _complete_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    payment: Payment,
    remote: RemotePayment,
    channel: str,
    signature: Optional[str] = None,
) -> bool:
    """
    Apply a gateway capture. Returns True only for the call that made the change.

    The captured amount and currency must match the local payment. A capture
    for a booking that has been cancelled confirms nothing and earns no
    points; the money goes back through _refund_stray_capture.
    """
    mismatch = _remote_mismatch(payment, remote)
    if mismatch is not None:
        logger.error("payment_amount_mismatch", payment_id=payment.id, detail=mismatch, channel=channel)
        raise ConflictError(mismatch, code="payment_amount_mismatch", payment_id=payment.id)

    booking = await _linked_booking(db, payment)
    if payment.status == PaymentStatus.CANCELLED.value or booking.status == BookingStatus.CANCELLED.value:
        return await _refund_stray_capture(db, gateway, payment, remote, channel, RECONCILABLE_PAYMENT_STATUSES)

    now = _now()
    points = loyalty_points_for(payment.amount)
    values = _capture_values(remote, now)
    values.update(status=PaymentStatus.COMPLETED.value, loyalty_points_awarded=points)
    if signature is not None:
        values["gateway_signature"] = signature

    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status.in_(COMPLETABLE_PAYMENT_STATUSES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.refresh(payment)
        logger.info("payment_already_settled", payment_id=payment.id, status=payment.status, channel=channel)
        return False

    record_payment_transition(PaymentStatus.COMPLETED.value, channel)

    confirmed = await db.execute(
        update(Booking)
        .where(Booking.id == payment.booking_id, Booking.status == BookingStatus.PENDING.value)
        .values(status=BookingStatus.CONFIRMED.value, confirmed_at=now, version=Booking.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(payment)
    booking = await _linked_booking(db, payment)

    if booking.status == BookingStatus.CANCELLED.value:
        # Cancelled between our read and the confirm
        await _refund_stray_capture(db, gateway, payment, remote, channel, (PaymentStatus.COMPLETED.value,))
        return True

    if points > 0:
        await db.execute(
            update(User)
            .where(User.id == payment.user_id)
            .values(loyalty_points=User.loyalty_points + points)
            .execution_options(synchronize_session=False)
        )

    logger.info(
        "payment_completed",
        payment_id=payment.id,
        booking_id=booking.id,
        amount=str(payment.amount),
        loyalty_points=points,
        channel=channel,
    )

    if confirmed.rowcount == 1:
        record_booking_transition(BookingStatus.CONFIRMED.value)
        await notification_service.emit(
            notification_service.BOOKING_CONFIRMED,
            {"booking_id": booking.id, "reference": booking.reference, "payment_id": payment.id},
            booking.branch_id,
        )
    return True


async def _refund_stray_capture(
    db: AsyncSession,
    gateway: PaymentGateway,
    payment: Payment,
    remote: RemotePayment,
    channel: str,
    from_statuses: tuple[str, ...],
) -> bool:
    """
    Give back money captured for a booking that is already cancelled.

    The refund is claimed locally first (refund_reference IS NULL) so verify
    and webhook racing on the same capture refund it once. If the gateway
    refuses, the payment stays completed with refund_status failed and the
    gateway's reason recorded, ready for a manual refund.
    """
    now = _now()
    amount = Decimal(payment.amount)
    reference = new_refund_reference()
    claim = _capture_values(remote, now)
    claim.update(
        status=PaymentStatus.COMPLETED.value,
        loyalty_points_awarded=0,
        refund_reference=reference,
        refund_amount=amount,
        refund_reason=STRAY_CAPTURE_REASON,
        refund_status=RefundStatus.PENDING.value,
        refund_method="original",
        refund_failure_reason=None,
    )
    claimed = await db.execute(
        update(Payment)
        .where(
            Payment.id == payment.id,
            Payment.status.in_(from_statuses),
            Payment.refund_reference.is_(None),
        )
        .values(**claim)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        await db.refresh(payment)
        logger.info("stray_capture_already_handled", payment_id=payment.id, status=payment.status, channel=channel)
        return False

    logger.warning(
        "stray_capture_refunding",
        payment_id=payment.id,
        booking_id=payment.booking_id,
        gateway_payment_id=remote.id,
        amount=str(amount),
        channel=channel,
    )
    try:
        refund = await gateway.create_remote_refund(
            remote.id,
            amount,
            {"payment_reference": payment.reference, "refund_reference": reference, "reason": STRAY_CAPTURE_REASON},
        )
    except GatewayError as e:
        logger.error(
            "stray_capture_refund_failed",
            payment_id=payment.id,
            error=e.message,
            retryable=e.retryable,
        )
        outcome = {
            "refund_status": RefundStatus.FAILED.value,
            "refund_failure_reason": e.message[:255],
        }
    else:
        outcome = {
            "status": PaymentStatus.REFUNDED.value,
            "refund_status": RefundStatus.PROCESSED.value,
            "refunded_at": now,
            "gateway_refund_id": refund.id,
        }
        record_payment_transition(PaymentStatus.REFUNDED.value, channel)

    await db.execute(
        update(Payment)
        .where(Payment.id == payment.id)
        .values(**outcome)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(payment)
    return True


async def _fail_payment(
    db: AsyncSession,
    payment: Payment,
    reason: str,
    channel: str,
    remote: Optional[RemotePayment] = None,
) -> bool:
    values: dict[str, Any] = {
        "status": PaymentStatus.FAILED.value,
        "failure_reason": reason[:255],
        "processed_at": _now(),
    }
    if remote is not None:
        values["gateway_payment_id"] = remote.id
        values["gateway_response"] = remote.raw or None

    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status.in_(FAILABLE_PAYMENT_STATUSES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(payment)
    if result.rowcount == 0:
        logger.info("payment_failure_ignored", payment_id=payment.id, status=payment.status, channel=channel)
        return False

    record_payment_transition(PaymentStatus.FAILED.value, channel)
    logger.warning("payment_failed", payment_id=payment.id, reason=reason, channel=channel)
    return True


async def _mark_processing(db: AsyncSession, payment: Payment, remote: RemotePayment) -> None:
    await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
        .values(
            status=PaymentStatus.PROCESSING.value,
            gateway_payment_id=remote.id,
            gateway_response=remote.raw or None,
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(payment)


async def _apply_remote_state(
    db: AsyncSession,
    gateway: PaymentGateway,
    payment: Payment,
    remote: RemotePayment,
    channel: str,
) -> None:
    if remote.status == REMOTE_CAPTURED:
        await _complete_payment(db, gateway, payment, remote, channel)
    elif remote.status == REMOTE_FAILED:
        await _fail_payment(db, payment, remote.error_description or "Payment failed at gateway", channel, remote)
    else:
        await _mark_processing(db, payment, remote)


# ---------------------------------------------------------------------------
# Verify callback
# ---------------------------------------------------------------------------


async def verify_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    actor: Actor,
    order_id: str,
    gateway_payment_id: str,
    signature: str,
) -> Payment:
    """
    Handle the client-relayed checkout callback.

    The signature is checked before anything is read. The gateway's own view
    of the payment is authoritative: a forged "success" from the client with
    a valid signature but an uncaptured payment does not complete anything.
    """
    verify_payment_signature(settings.RAZORPAY_KEY_SECRET, order_id, gateway_payment_id, signature)

    payment = await _payment_by_order(db, order_id)
    if payment is None:
        raise NotFoundError("Payment not found", code="payment_not_found")
    if not actor.can_access(payment.user_id):
        raise AuthorizationError("You can only verify your own payments")
    await _linked_booking(db, payment)

    if payment.status in (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value):
        logger.info("payment_verify_repeat", payment_id=payment.id, status=payment.status)
        return payment
    remote = await gateway.fetch_remote_payment(gateway_payment_id)
    if remote.status == REMOTE_CAPTURED:
        await _complete_payment(db, gateway, payment, remote, "verify", signature)
    elif payment.status == PaymentStatus.CANCELLED.value:
        raise ConflictError("Payment has been cancelled", code="payment_cancelled")
    else:
        await _apply_remote_state(db, gateway, payment, remote, "verify")
    return payment


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


def _payment_entity(payload: dict) -> dict:
    try:
        return payload["payload"]["payment"]["entity"]
    except (KeyError, TypeError) as e:
        raise ValidationError("Webhook payload has no payment entity", code="invalid_payload") from e


async def _handle_payment_event(
    db: AsyncSession,
    gateway: PaymentGateway,
    event_type: str,
    payload: dict,
) -> tuple[str, Optional[str]]:
    """Returns the ledger result and, when nothing was applied, why."""
    entity = _payment_entity(payload)
    order_id = entity.get("order_id")
    payment = await _payment_by_order(db, order_id) if order_id else None
    if payment is None:
        logger.warning("webhook_unknown_order", event_type=event_type, order_id=order_id)
        return "ignored", f"No payment for order {order_id}"[:255]
    await _linked_booking(db, payment)

    remote = parse_payment_entity(entity)
    if event_type == PAYMENT_CAPTURED:
        mismatch = _remote_mismatch(payment, remote)
        if mismatch is not None:
            logger.error("payment_amount_mismatch", payment_id=payment.id, detail=mismatch, channel="webhook")
            return "rejected", mismatch
        changed = await _complete_payment(db, gateway, payment, remote, "webhook")
    else:
        changed = await _fail_payment(
            db, payment, remote.error_description or "Payment failed at gateway", "webhook", remote
        )
    return ("processed" if changed else "unchanged"), None


async def process_webhook(
    db: AsyncSession,
    gateway: PaymentGateway,
    raw_body: bytes,
    signature: Optional[str],
    event_id: Optional[str] = None,
) -> dict:
    """
    Process a gateway webhook delivery.

    Deliveries are recorded in webhook_events; a replayed event id is
    acknowledged without being applied again. Unknown event types are
    accepted and ignored so the gateway stops redelivering them. A capture
    whose amount or currency disagrees with the order is acknowledged but
    recorded as rejected, with the reason in error_message.
    """
    try:
        verify_webhook_signature(settings.RAZORPAY_WEBHOOK_SECRET, raw_body, signature)
    except SignatureError:
        record_webhook("unknown", "rejected")
        logger.warning("webhook_signature_rejected")
        raise

    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        raise ValidationError("Webhook body is not valid JSON", code="invalid_payload") from e
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object", code="invalid_payload")

    event_type = str(payload.get("event") or "unknown")[:EVENT_TYPE_MAX_LENGTH]
    metric_label = event_type if event_type in HANDLED_EVENTS else "other"
    event_id = event_id or payload.get("id")
    if event_id is not None and (not isinstance(event_id, str) or len(event_id) > EVENT_ID_MAX_LENGTH):
        raise ValidationError("Webhook event id is malformed", code="invalid_payload")
    received_at = _now()

    if event_id is not None:
        recorded = await db.execute(
            insert_ignore(
                db,
                WebhookEvent,
                {
                    "event_id": event_id,
                    "event_type": event_type,
                    "payload": payload,
                    "result": "received",
                    "received_at": received_at,
                },
                ["event_id"],
            )
        )
        if recorded.rowcount == 0:
            record_webhook(metric_label, "duplicate")
            logger.info("webhook_duplicate", event_id=event_id, event_type=event_type)
            return {"status": "ok", "result": "duplicate", "event": event_type}

    error_message = None
    if event_type in (PAYMENT_CAPTURED, PAYMENT_FAILED):
        result, error_message = await _handle_payment_event(db, gateway, event_type, payload)
    elif event_type == REFUND_CREATED:
        logger.info("webhook_refund_created", event_id=event_id)
        result = "logged"
    else:
        logger.info("webhook_ignored", event_id=event_id, event_type=event_type)
        result = "ignored"

    if event_id is not None:
        await db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.event_id == event_id)
            .values(result=result, error_message=error_message)
            .execution_options(synchronize_session=False)
        )
    else:
        db.add(
            WebhookEvent(
                event_type=event_type,
                payload=payload,
                result=result,
                error_message=error_message,
                received_at=received_at,
            )
        )
        await db.flush()

    record_webhook(metric_label, result)
    return {"status": "ok", "result": result, "event": event_type}


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


async def refund_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    actor: Actor,
    payment_id: int,
    amount: Optional[Decimal] = None,
    reason: str = "requested_by_customer",
    method: str = "original",
    cancel_booking: bool = True,
) -> Payment:
    """
    Refund a completed payment.

    The gateway is called first; if it refuses, the payment is left exactly
    as it was. A full refund also cancels the booking unless the caller is
    the cancellation flow itself (``cancel_booking=False``).
    """
    payment = await _load_payment(db, payment_id)
    if not actor.can_access(payment.user_id):
        raise AuthorizationError("You can only refund your own payments")
    if payment.status != PaymentStatus.COMPLETED.value:
        raise ConflictError(
            f"Only completed payments can be refunded (status: {payment.status})",
            code="payment_not_refundable",
        )

    total = Decimal(payment.amount)
    amount = total if amount is None else Decimal(amount)
    if amount <= 0 or amount > total:
        raise ValidationError(
            f"Refund amount must be greater than 0 and at most {total}",
            code="invalid_refund_amount",
        )

    reference = new_refund_reference()
    try:
        remote = await gateway.create_remote_refund(
            payment.gateway_payment_id or payment.transaction_id,
            amount,
            {"payment_reference": payment.reference, "refund_reference": reference, "reason": reason},
        )
    except GatewayError as e:
        logger.error(
            "refund_failed",
            payment_id=payment.id,
            amount=str(amount),
            error=e.message,
            retryable=e.retryable,
        )
        raise

    now = _now()
    refunded = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.COMPLETED.value)
        .values(
            status=PaymentStatus.REFUNDED.value,
            refund_reference=reference,
            refund_amount=amount,
            refund_reason=reason[:200],
            refund_status=RefundStatus.PROCESSED.value,
            refund_failure_reason=None,
            refund_method=method,
            refunded_at=now,
            gateway_refund_id=remote.id,
        )
        .execution_options(synchronize_session=False)
    )
    if refunded.rowcount == 0:
        logger.error("refund_state_race", payment_id=payment.id, gateway_refund_id=remote.id)
        raise ConflictError("Payment was refunded concurrently", code="payment_not_refundable")

    await db.refresh(payment)
    record_payment_transition(PaymentStatus.REFUNDED.value, "refund")
    logger.info(
        "payment_refunded",
        payment_id=payment.id,
        amount=str(amount),
        refund_reference=reference,
        gateway_refund_id=remote.id,
    )

    if cancel_booking and amount == total:
        await _cancel_for_refund(db, payment, amount, reason, now)
    return payment


async def _cancel_for_refund(db: AsyncSession, payment: Payment, amount: Decimal, reason: str, now: datetime) -> None:
    result = await db.execute(
        update(Booking)
        .where(Booking.id == payment.booking_id, Booking.status.in_(ACTIVE_BOOKING_STATUSES))
        .values(
            status=BookingStatus.CANCELLED.value,
            cancelled_by=ROLE_SYSTEM,
            cancellation_reason=f"refund: {reason}"[:200],
            cancelled_at=now,
            refund_amount=amount,
            version=Booking.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info("refund_booking_not_active", payment_id=payment.id, booking_id=payment.booking_id)
        return

    booking = await _linked_booking(db, payment)
    record_booking_transition(BookingStatus.CANCELLED.value)
    logger.info("booking_cancelled", booking_id=booking.id, actor="system", refund=str(amount))
    await notification_service.emit(
        notification_service.BOOKING_CANCELLED,
        {"booking_id": booking.id, "reference": booking.reference, "refund_amount": str(amount)},
        booking.branch_id,
    )


async def cancel_open_payment(db: AsyncSession, payment_id: int) -> bool:
    """
    Close an unsettled payment whose booking is being cancelled.

    Only pending/processing/failed payments move; a completed one goes
    through refund_payment instead. Returns True if this call cancelled it.
    """
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status.in_(COMPLETABLE_PAYMENT_STATUSES))
        .values(status=PaymentStatus.CANCELLED.value, processed_at=_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False
    record_payment_transition(PaymentStatus.CANCELLED.value, "cancel")
    logger.info("payment_cancelled", payment_id=payment_id)
    return True


# ---------------------------------------------------------------------------
# Reconciliation and reads
# ---------------------------------------------------------------------------


async def reconcile_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    actor: Actor,
    payment_id: int,
) -> Payment:
    """
    Re-query the gateway and converge a pending/processing/failed payment.

    Cancelled payments are checked too, so a capture that arrived after the
    booking was cancelled gets refunded.
    """
    payment = await _load_payment(db, payment_id)
    if not actor.can_access(payment.user_id):
        raise AuthorizationError("You can only reconcile your own payments")

    if payment.status not in RECONCILABLE_PAYMENT_STATUSES:
        logger.info("reconcile_skipped", payment_id=payment.id, status=payment.status)
        return payment
    if not payment.gateway_payment_id:
        logger.info("reconcile_no_remote_payment", payment_id=payment.id)
        return payment

    await _linked_booking(db, payment)
    remote = await gateway.fetch_remote_payment(payment.gateway_payment_id)
    previous = payment.status
    await _apply_remote_state(db, gateway, payment, remote, "reconcile")
    logger.info(
        "payment_reconciled",
        payment_id=payment.id,
        remote_status=remote.status,
        previous=previous,
        current=payment.status,
    )
    return payment


async def get_payment(db: AsyncSession, payment_id: int, actor: Actor) -> Payment:
    payment = await _load_payment(db, payment_id)
    if not actor.can_access(payment.user_id):
        raise AuthorizationError("You can only access your own payments")
    return payment


async def list_user_payments(
    db: AsyncSession,
    actor: Actor,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Payment], int]:
    query = select(Payment).where(Payment.user_id == actor.user_id)
    count_query = select(func.count(Payment.id)).where(Payment.user_id == actor.user_id)
    if status:
        query = query.where(Payment.status == status)
        count_query = count_query.where(Payment.status == status)

    total = await db.scalar(count_query)
    result = await db.execute(query.order_by(Payment.id.desc()).limit(limit).offset(offset))
    return list(result.scalars().all()), total or 0
