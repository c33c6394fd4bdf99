from tablebook.schemas.availability import AvailabilityResponse, TableResponse
from tablebook.schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingRate,
    BookingResponse,
)
from tablebook.schemas.offer import OfferQuoteRequest, OfferQuoteResponse, OfferResponse
from tablebook.schemas.payment import (
    PaymentListResponse,
    PaymentOrderCreate,
    PaymentOrderResponse,
    PaymentRefund,
    PaymentResponse,
    PaymentVerify,
    WebhookAck,
)

__all__ = [
    "AvailabilityResponse", "TableResponse",
    "BookingCancel", "BookingCreate", "BookingListResponse", "BookingRate", "BookingResponse",
    "OfferQuoteRequest", "OfferQuoteResponse", "OfferResponse",
    "PaymentListResponse", "PaymentOrderCreate", "PaymentOrderResponse", "PaymentRefund",
    "PaymentResponse", "PaymentVerify", "WebhookAck",
]
