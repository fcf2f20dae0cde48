from rentals.models.user import User
from rentals.models.asset import Asset
from rentals.models.promotion import Promotion
from rentals.models.booking import Booking, BookingStatus
from rentals.models.outbox import OutboxEvent, OutboxStatus

__all__ = [
    "User", "Asset", "Promotion", "Booking", "BookingStatus",
    "OutboxEvent", "OutboxStatus",
]
