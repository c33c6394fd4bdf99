"""
Payment gateway factory.
Configures which gateway implementation the payment service talks to.
"""

from typing import Optional

from tablebook.core.config import get_settings
from tablebook.services.interfaces.gateway import PaymentGateway
from tablebook.services.interfaces.sandbox_gateway import SandboxGateway


def build_gateway() -> PaymentGateway:
    """
    Build the configured gateway.

    - razorpay: live Razorpay API (default)
    - sandbox: in-process gateway for local development

    Selected via the PAYMENT_GATEWAY env var.
    """
    settings = get_settings()
    if settings.PAYMENT_GATEWAY == "sandbox":
        return SandboxGateway()

    from tablebook.infrastructure.razorpay_client import RazorpayGateway

    return RazorpayGateway.from_settings()


_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """FastAPI dependency returning the gateway singleton."""
    global _gateway
    if _gateway is None:
        _gateway = build_gateway()
    return _gateway


async def close_gateway() -> None:
    global _gateway
    if _gateway is not None and hasattr(_gateway, "close"):
        await _gateway.close()
    _gateway = None
