"""FastAPI routers package."""

from .booking import router as booking_router
from .listing import router as listing_router
from .metrics import router as metrics_router
from .payment import router as payment_router

__all__ = [
    "booking_router",
    "listing_router",
    "metrics_router",
    "payment_router",
]
