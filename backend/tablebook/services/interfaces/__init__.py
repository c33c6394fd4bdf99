"""
Service interfaces for dependency inversion.
Allows swapping the payment provider without changing business logic.
"""

from .gateway import PaymentGateway, RemoteOrder, RemotePayment, RemoteRefund
from .sandbox_gateway import SandboxGateway

__all__ = ["PaymentGateway", "RemoteOrder", "RemotePayment", "RemoteRefund", "SandboxGateway"]
