"""Service layer package."""

from .availability_service import AvailabilityService, DateRangeConflict
from .booking_service import BookingService
from .booking_state import BookingEvent, IllegalTransitionError, transition
from .completion_service import CompletionService
from .hold_service import HoldService
from .listing_service import ListingService
from .payment_service import PaymentService, ReconciliationResult, compute_charge

__all__ = [
    "AvailabilityService",
    "BookingEvent",
    "BookingService",
    "CompletionService",
    "DateRangeConflict",
    "HoldService",
    "IllegalTransitionError",
    "ListingService",
    "PaymentService",
    "ReconciliationResult",
    "compute_charge",
    "transition",
]
