from tablebook.models.user import User
from tablebook.models.branch import Branch
from tablebook.models.table import Table, TableSchedule
from tablebook.models.offer import Offer, OfferUsage
from tablebook.models.booking import Booking, BookingItem
from tablebook.models.payment import Payment, WebhookEvent

__all__ = [
    "User", "Branch", "Table", "TableSchedule", "Offer", "OfferUsage",
    "Booking", "BookingItem", "Payment", "WebhookEvent",
]
