"""
Booking state machine.

This table is the single authority on booking status changes. Services never
assign `booking.status` themselves; they call `transition(booking, event)`.

    (start) -> pending_payment            amount to charge > 0
    (start) -> confirmed                  amount to charge == 0
    pending_payment -> confirmed          payment verified
    pending_payment -> payment_failed     signature verification failed
    pending_payment -> cancelled          user/admin cancellation, hold expiry
    confirmed -> active                   ride start recorded (optional)
    confirmed|active|overdue -> completed ride end recorded
    confirmed|active -> cancelled         user/admin cancellation
    confirmed|active -> overdue           end time passed without ride end
    overdue -> cancelled                  admin override

completed, cancelled and payment_failed are terminal.
"""

import enum
from typing import Optional

from rentals.core.exceptions import InvalidTransitionError
from rentals.core.logging import get_logger
from rentals.models.booking import Booking, BookingStatus

logger = get_logger(__name__)


class BookingEvent(str, enum.Enum):
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_FAILED = "payment_failed"
    RIDE_STARTED = "ride_started"
    RIDE_ENDED = "ride_ended"
    CANCELLED = "cancelled"
    HOLD_EXPIRED = "hold_expired"
    MARKED_OVERDUE = "marked_overdue"


S = BookingStatus
E = BookingEvent

TRANSITIONS: dict[tuple[BookingStatus, BookingEvent], BookingStatus] = {
    (S.PENDING_PAYMENT, E.PAYMENT_VERIFIED): S.CONFIRMED,
    (S.PENDING_PAYMENT, E.PAYMENT_FAILED): S.PAYMENT_FAILED,
    (S.PENDING_PAYMENT, E.CANCELLED): S.CANCELLED,
    (S.PENDING_PAYMENT, E.HOLD_EXPIRED): S.CANCELLED,
    (S.CONFIRMED, E.RIDE_STARTED): S.ACTIVE,
    (S.CONFIRMED, E.RIDE_ENDED): S.COMPLETED,
    (S.CONFIRMED, E.CANCELLED): S.CANCELLED,
    (S.CONFIRMED, E.MARKED_OVERDUE): S.OVERDUE,
    (S.ACTIVE, E.RIDE_ENDED): S.COMPLETED,
    (S.ACTIVE, E.CANCELLED): S.CANCELLED,
    (S.ACTIVE, E.MARKED_OVERDUE): S.OVERDUE,
    (S.OVERDUE, E.RIDE_ENDED): S.COMPLETED,
    (S.OVERDUE, E.CANCELLED): S.CANCELLED,
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED, S.PAYMENT_FAILED})

# Admin status override: requested target status -> event that reaches it.
# confirmed and payment_failed are reached only through payment verification.
OVERRIDE_EVENTS: dict[BookingStatus, BookingEvent] = {
    S.ACTIVE: E.RIDE_STARTED,
    S.COMPLETED: E.RIDE_ENDED,
    S.CANCELLED: E.CANCELLED,
    S.OVERDUE: E.MARKED_OVERDUE,
}


def initial_status(final_amount_minor: int) -> BookingStatus:
    return S.PENDING_PAYMENT if final_amount_minor > 0 else S.CONFIRMED


def next_status(current: BookingStatus, event: BookingEvent) -> Optional[BookingStatus]:
    return TRANSITIONS.get((BookingStatus(current), BookingEvent(event)))


def can_transition(booking: Booking, event: BookingEvent) -> bool:
    return next_status(BookingStatus(booking.status), event) is not None


def transition(booking: Booking, event: BookingEvent) -> BookingStatus:
    """Apply `event` to `booking` or raise InvalidTransitionError."""
    current = BookingStatus(booking.status)
    target = next_status(current, event)
    if target is None:
        raise InvalidTransitionError(
            f"Booking cannot go from '{current.value}' on '{BookingEvent(event).value}'.",
            extra={"current_status": current.value},
        )
    booking.status = target.value
    logger.info(
        "booking_status_changed",
        booking_id=booking.id,
        from_status=current.value,
        to_status=target.value,
        booking_event=BookingEvent(event).value,
    )
    return target
