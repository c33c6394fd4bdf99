"""
Typed errors raised by the booking and payment core.

Every error carries a machine-readable ``code`` naming the rule that failed
and the HTTP status the API layer maps it to. Services raise these; route
handlers never build error responses themselves.
"""

from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

from tablebook.core.logging import get_logger

logger = get_logger(__name__)


class TableBookError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "error"

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class ValidationError(TableBookError):
    """Malformed or out-of-range input the caller can correct."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class OfferNotApplicable(ValidationError):
    default_code = "offer_not_applicable"


class NotFoundError(TableBookError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ConflictError(TableBookError):
    """A state-machine precondition does not hold (slot taken, already refunded, ...)."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class AuthorizationError(TableBookError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "access_denied"


class SignatureError(TableBookError):
    """Cryptographic verification failed. The message is always generic."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "invalid_signature"

    def __init__(self, message: str = "Invalid signature", code: Optional[str] = None, **context: Any):
        super().__init__(message, code, **context)


class GatewayError(TableBookError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "gateway_error"

    def __init__(self, message: str, retryable: bool, code: Optional[str] = None, **context: Any):
        super().__init__(message, code, **context)
        self.retryable = retryable

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retryable"] = self.retryable
        return data


class IntegrityError(TableBookError):
    """Stored records contradict each other. Never coerced into NotFound."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "integrity_error"


async def tablebook_error_handler(request: Request, exc: TableBookError) -> JSONResponse:
    if isinstance(exc, IntegrityError):
        logger.error("integrity_violation", error=exc.message, **exc.context)
    else:
        logger.info("request_rejected", error=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
