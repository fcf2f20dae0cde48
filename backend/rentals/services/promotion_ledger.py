"""
Promotion usage ledger.

`usage_count` is only ever changed here, with one conditional UPDATE per call,
so N concurrent increments can never push it past max_usage_count:

    UPDATE promotions SET usage_count = usage_count + 1
     WHERE id = :id AND usage_count < max_usage_count

Booking-scoped wrappers first flip a flag on the booking with the same kind of
conditional UPDATE, so each booking is counted (and reverted) at most once no
matter how many times the outbox redelivers the event.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.logging import get_logger
from rentals.core.metrics import record_ledger_operation
from rentals.models.booking import Booking
from rentals.models.promotion import Promotion

logger = get_logger(__name__)


async def increment(db: AsyncSession, promotion_id: int) -> bool:
    """Take one usage slot. Returns False when the cap is already reached."""
    result = await db.execute(
        update(Promotion)
        .where(Promotion.id == promotion_id, Promotion.usage_count < Promotion.max_usage_count)
        .values(usage_count=Promotion.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    taken = result.rowcount == 1
    record_ledger_operation("increment", "applied" if taken else "cap_reached")
    return taken


async def decrement(db: AsyncSession, promotion_id: int) -> bool:
    result = await db.execute(
        update(Promotion)
        .where(Promotion.id == promotion_id, Promotion.usage_count > 0)
        .values(usage_count=Promotion.usage_count - 1)
        .execution_options(synchronize_session=False)
    )
    released = result.rowcount == 1
    record_ledger_operation("decrement", "applied" if released else "skipped")
    return released


async def record_usage(db: AsyncSession, booking_id: int) -> bool:
    """
    Count the booking's promotion once. Caller commits.

    Returns True if this call recorded the usage, False if the booking has no
    promotion or was already counted.
    """
    claim = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.promotion_id.is_not(None),
            Booking.promotion_usage_recorded.is_(False),
        )
        .values(promotion_usage_recorded=True)
        .returning(Booking.promotion_id)
        .execution_options(synchronize_session=False)
    )
    promotion_id = claim.scalar_one_or_none()
    if promotion_id is None:
        record_ledger_operation("increment", "skipped")
        return False

    if not await increment(db, promotion_id):
        # Cap reached: the booking keeps its discount but is not counted, so a
        # later reversal must not give a slot back.
        await db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(promotion_usage_recorded=False)
            .execution_options(synchronize_session=False)
        )
        logger.warning(
            "promotion_cap_reached_on_confirm",
            booking_id=booking_id,
            promotion_id=promotion_id,
        )
        return False

    logger.info("promotion_usage_recorded", booking_id=booking_id, promotion_id=promotion_id)
    return True


async def reverse_usage(db: AsyncSession, booking_id: int) -> bool:
    """Give back a recorded usage once. Caller commits."""
    claim = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.promotion_id.is_not(None),
            Booking.promotion_usage_recorded.is_(True),
            Booking.promotion_usage_reverted.is_(False),
        )
        .values(promotion_usage_reverted=True)
        .returning(Booking.promotion_id)
        .execution_options(synchronize_session=False)
    )
    promotion_id = claim.scalar_one_or_none()
    if promotion_id is None:
        record_ledger_operation("decrement", "skipped")
        return False
    await decrement(db, promotion_id)
    logger.info("promotion_usage_reverted", booking_id=booking_id, promotion_id=promotion_id)
    return True
