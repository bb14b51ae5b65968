"""Models module exporting all database models."""

from .booking import OCCUPYING_STATUSES, Booking, BookingStatus
from .listing import Listing
from .payment import PaymentSession, PaymentSessionStatus, Transaction, TransactionStatus

__all__ = [
    # Core entities
    "Listing",

    # Booking entities
    "Booking",
    "BookingStatus",
    "OCCUPYING_STATUSES",

    # Payment entities
    "PaymentSession",
    "PaymentSessionStatus",
    "Transaction",
    "TransactionStatus",
]
