"""
Razorpay REST client.

Separated from business logic: the payment service sees only the
PaymentGateway interface. Amounts cross the wire in paise.

Retry classification:
  - order creation: any failure is retryable, nothing was recorded locally
  - payment fetch: read-only, retryable
  - refund: a 4xx rejection is retryable (nothing happened remotely); a
    timeout or transport error is NOT, the refund may have gone through and
    the caller must reconcile before trying again
"""

import time
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import httpx

from tablebook.core.config import get_settings
from tablebook.core.exceptions import GatewayError
from tablebook.core.logging import get_logger
from tablebook.core.metrics import gateway_latency, record_gateway_call
from tablebook.services.interfaces.gateway import (
    PaymentGateway,
    RemoteOrder,
    RemotePayment,
    RemoteRefund,
)

logger = get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: Optional[int]) -> Decimal:
    return (Decimal(value or 0) / 100).quantize(Decimal("0.01"))


class RazorpayGateway(PaymentGateway):
    name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "RazorpayGateway":
        settings = get_settings()
        return cls(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            base_url=settings.RAZORPAY_API_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        retry_on_ambiguous: bool,
        json: Optional[dict] = None,
    ) -> dict:
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            record_gateway_call(operation, "timeout")
            logger.warning("gateway_timeout", operation=operation, path=path)
            raise GatewayError(
                "Payment gateway timed out; remote state is unknown",
                retryable=retry_on_ambiguous,
                code="gateway_timeout",
            ) from e
        except httpx.HTTPError as e:
            record_gateway_call(operation, "error")
            logger.error("gateway_transport_error", operation=operation, error=str(e))
            raise GatewayError(
                "Payment gateway unreachable",
                retryable=retry_on_ambiguous,
                code="gateway_unreachable",
            ) from e
        finally:
            gateway_latency.labels(operation=operation).observe(time.perf_counter() - start)

        if response.status_code >= 500:
            record_gateway_call(operation, "error")
            logger.error("gateway_server_error", operation=operation, status=response.status_code)
            raise GatewayError(
                "Payment gateway error",
                retryable=retry_on_ambiguous,
                code="gateway_server_error",
            )
        if response.status_code >= 400:
            record_gateway_call(operation, "rejected")
            try:
                description = response.json().get("error", {}).get("description", "rejected")
            except ValueError:
                description = "rejected"
            logger.warning(
                "gateway_rejected",
                operation=operation,
                status=response.status_code,
                description=description,
            )
            raise GatewayError(
                f"Payment gateway rejected the request: {description}",
                retryable=True,
                code="gateway_rejected",
            )

        record_gateway_call(operation, "ok")
        return response.json()

    async def create_remote_order(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: dict[str, Any],
    ) -> RemoteOrder:
        data = await self._request(
            "create_order",
            "POST",
            "/orders",
            retry_on_ambiguous=True,
            json={
                "amount": to_minor_units(amount),
                "currency": currency,
                "receipt": reference,
                "notes": {k: str(v) for k, v in metadata.items()},
            },
        )
        return RemoteOrder(
            id=data["id"],
            amount=from_minor_units(data.get("amount")),
            currency=data.get("currency", currency),
        )

    async def fetch_remote_payment(self, payment_id: str) -> RemotePayment:
        data = await self._request(
            "fetch_payment", "GET", f"/payments/{payment_id}", retry_on_ambiguous=True
        )
        return parse_payment_entity(data)

    async def create_remote_refund(
        self,
        payment_id: str,
        amount: Decimal,
        metadata: dict[str, Any],
    ) -> RemoteRefund:
        data = await self._request(
            "create_refund",
            "POST",
            f"/payments/{payment_id}/refund",
            retry_on_ambiguous=False,
            json={
                "amount": to_minor_units(amount),
                "notes": {k: str(v) for k, v in metadata.items()},
            },
        )
        return RemoteRefund(id=data["id"], status=data.get("status", "processed"))


def parse_payment_entity(data: dict) -> RemotePayment:
    """Map a Razorpay payment entity (API response or webhook payload)."""
    captured_at = None
    if data.get("created_at"):
        captured_at = datetime.fromtimestamp(data["created_at"], tz=timezone.utc)
    return RemotePayment(
        id=data["id"],
        status=data.get("status", "created"),
        amount=from_minor_units(data.get("amount")) if data.get("amount") is not None else None,
        currency=data.get("currency"),
        fee=from_minor_units(data.get("fee")),
        captured_at=captured_at,
        error_description=data.get("error_description"),
        raw=data,
    )
