"""
In-process payment gateway for local development and tests.

Orders, payments and refunds live in dictionaries. Any payment id that was
never registered is reported as captured, which is what a developer clicking
through the checkout expects. Failures can be scripted per operation.
"""

import itertools
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from tablebook.core.exceptions import GatewayError
from tablebook.core.metrics import record_gateway_call
from tablebook.services.interfaces.gateway import (
    REMOTE_CAPTURED,
    PaymentGateway,
    RemoteOrder,
    RemotePayment,
    RemoteRefund,
)


class SandboxGateway(PaymentGateway):
    name = "sandbox"

    def __init__(self):
        self._ids = itertools.count(1)
        self.orders: dict[str, RemoteOrder] = {}
        self.payments: dict[str, RemotePayment] = {}
        self.refunds: list[tuple[str, Decimal, RemoteRefund]] = []
        self.calls: list[str] = []
        self._failures: dict[str, GatewayError] = {}
        self.refund_status = "processed"

    def fail_next(self, operation: str, error: Optional[GatewayError] = None) -> None:
        """Make the next call to ``operation`` raise ``error``."""
        self._failures[operation] = error or GatewayError(
            "Sandbox gateway failure", retryable=True, code="gateway_rejected"
        )

    def set_payment(
        self,
        payment_id: str,
        status: str = REMOTE_CAPTURED,
        fee: Decimal = Decimal("0"),
        error_description: Optional[str] = None,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> RemotePayment:
        payment = RemotePayment(
            id=payment_id,
            status=status,
            fee=Decimal(fee),
            captured_at=datetime.now(timezone.utc),
            amount=Decimal(amount) if amount is not None else None,
            currency=currency,
            error_description=error_description,
            raw={"id": payment_id, "status": status},
        )
        self.payments[payment_id] = payment
        return payment

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        error = self._failures.pop(operation, None)
        if error is not None:
            record_gateway_call(operation, "rejected")
            raise error
        record_gateway_call(operation, "ok")

    async def create_remote_order(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: dict[str, Any],
    ) -> RemoteOrder:
        self._enter("create_order")
        order = RemoteOrder(id=f"order_sbx{next(self._ids):06d}", amount=Decimal(amount), currency=currency)
        self.orders[order.id] = order
        return order

    async def fetch_remote_payment(self, payment_id: str) -> RemotePayment:
        self._enter("fetch_payment")
        return self.payments.get(payment_id) or self.set_payment(payment_id)

    async def create_remote_refund(
        self,
        payment_id: str,
        amount: Decimal,
        metadata: dict[str, Any],
    ) -> RemoteRefund:
        self._enter("create_refund")
        refund = RemoteRefund(id=f"rfnd_sbx{next(self._ids):06d}", status=self.refund_status)
        self.refunds.append((payment_id, Decimal(amount), refund))
        return refund
