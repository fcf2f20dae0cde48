"""
Time-based booking sweeps, run periodically by Celery beat (see tasks/).

- mark_overdue_bookings: confirmed/active bookings whose end time (plus grace)
  has passed without a ride end become overdue
- expire_payment_holds: pending_payment bookings older than the payment hold
  are cancelled, freeing their window

Each booking is re-checked under a row lock before it is moved, so a sweep
racing a payment confirmation or ride end never overwrites it.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.config import get_settings
from rentals.core.logging import get_logger
from rentals.core.metrics import record_sweep_transition
from rentals.db.base import utcnow
from rentals.models.booking import Booking, BookingStatus
from rentals.services import outbox_service
from rentals.services.booking_state import BookingEvent, can_transition, transition

logger = get_logger(__name__)
settings = get_settings()


async def _locked(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def mark_overdue_bookings(db: AsyncSession, now: Optional[datetime] = None) -> list[int]:
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.OVERDUE_GRACE_MINUTES)
    result = await db.execute(
        select(Booking.id).where(
            Booking.status.in_((BookingStatus.CONFIRMED.value, BookingStatus.ACTIVE.value)),
            Booking.end_time < cutoff,
        )
    )
    candidate_ids = list(result.scalars().all())

    moved = []
    for booking_id in candidate_ids:
        booking = await _locked(db, booking_id)
        if booking is None or booking.end_time >= cutoff:
            await db.rollback()
            continue
        if not can_transition(booking, BookingEvent.MARKED_OVERDUE):
            await db.rollback()
            continue
        transition(booking, BookingEvent.MARKED_OVERDUE)
        await outbox_service.enqueue_notification(
            db,
            booking.id,
            booking.user_id,
            kind="overdue",
            title="Ride Overdue",
            body=(
                f"Your booking (Ref: {booking.booking_reference}) has passed its end time. "
                f"Overtime charges apply until the ride is ended."
            ),
            data={"screen": "BookingDetails", "bookingId": str(booking.id)},
        )
        await db.commit()
        moved.append(booking.id)

    record_sweep_transition("overdue", len(moved))
    if moved:
        logger.info("bookings_marked_overdue", count=len(moved), booking_ids=moved)
    return moved


async def expire_payment_holds(db: AsyncSession, now: Optional[datetime] = None) -> list[int]:
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.PAYMENT_HOLD_MINUTES)
    result = await db.execute(
        select(Booking.id).where(
            Booking.status == BookingStatus.PENDING_PAYMENT.value,
            Booking.created_at < cutoff,
        )
    )
    candidate_ids = list(result.scalars().all())

    expired = []
    for booking_id in candidate_ids:
        booking = await _locked(db, booking_id)
        if booking is None or not can_transition(booking, BookingEvent.HOLD_EXPIRED):
            await db.rollback()
            continue
        transition(booking, BookingEvent.HOLD_EXPIRED)
        booking.cancellation_reason = "payment_hold_expired"
        await db.commit()
        expired.append(booking.id)

    record_sweep_transition("hold_expired", len(expired))
    if expired:
        logger.info("payment_holds_expired", count=len(expired), booking_ids=expired)
    return expired
