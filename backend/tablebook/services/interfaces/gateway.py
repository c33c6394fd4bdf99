"""
Payment gateway interface.

The reconciliation engine only depends on this surface. Gateway specifics
(wire format, auth, minor-unit conversion) stay inside implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

# Remote payment statuses the engine understands
REMOTE_CAPTURED = "captured"
REMOTE_FAILED = "failed"


@dataclass(frozen=True)
class RemoteOrder:
    id: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class RemotePayment:
    id: str
    status: str  # created, authorized, captured, refunded, failed
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    fee: Decimal = Decimal("0")
    captured_at: Optional[datetime] = None
    error_description: Optional[str] = None
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RemoteRefund:
    id: str
    status: str


class PaymentGateway(ABC):
    """
    Interface for payment providers.

    Implementations:
    - RazorpayGateway: Razorpay REST API over httpx
    - SandboxGateway: in-process gateway for local development

    Every method raises GatewayError on failure, with ``retryable`` telling
    the caller whether repeating the call is safe.
    """

    name: str = "gateway"

    @abstractmethod
    async def create_remote_order(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: dict[str, Any],
    ) -> RemoteOrder:
        """
        Create an order the client will pay against.

        Args:
            amount: Amount in major currency units
            currency: ISO currency code
            reference: Local receipt reference
            metadata: Free-form notes attached to the order
        """
        pass

    @abstractmethod
    async def fetch_remote_payment(self, payment_id: str) -> RemotePayment:
        """Fetch the authoritative state of a payment."""
        pass

    @abstractmethod
    async def create_remote_refund(
        self,
        payment_id: str,
        amount: Decimal,
        metadata: dict[str, Any],
    ) -> RemoteRefund:
        """Refund ``amount`` (major units) of a captured payment."""
        pass
