"""
Transactional outbox for booking side effects.

`enqueue()` adds a row to the caller's transaction, so the side effect exists
if and only if the status change that caused it was committed. Delivery runs
after commit (best effort, from the request) and again from the periodic
sweep until it succeeds or runs out of attempts.

Event types:
    promotion.record_usage    count the booking's promotion in the ledger
    promotion.reverse_usage   give a counted usage back
    notification.send         push a message to the user
"""

from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.config import get_settings
from rentals.core.logging import get_logger
from rentals.core.metrics import record_outbox_dispatch
from rentals.db.base import utcnow
from rentals.models.outbox import OutboxEvent, OutboxStatus
from rentals.services import promotion_ledger
from rentals.services.interfaces.notifier import NotificationDispatcher

logger = get_logger(__name__)
settings = get_settings()

RECORD_PROMOTION_USAGE = "promotion.record_usage"
REVERSE_PROMOTION_USAGE = "promotion.reverse_usage"
SEND_NOTIFICATION = "notification.send"

MAX_BACKOFF = timedelta(hours=1)


async def enqueue(
    db: AsyncSession,
    event_type: str,
    aggregate_id: Any,
    payload: dict[str, Any],
    idempotency_key: str,
) -> Optional[OutboxEvent]:
    """
    Add an outbox row to the current transaction.

    Returns None when a row with the same idempotency key already exists
    (the side effect is already scheduled).
    """
    existing = await db.execute(
        select(OutboxEvent.id).where(OutboxEvent.idempotency_key == idempotency_key)
    )
    if existing.scalar_one_or_none() is not None:
        logger.info("outbox_event_duplicate", event_type=event_type, idempotency_key=idempotency_key)
        return None
    event = OutboxEvent(
        event_type=event_type,
        aggregate_id=str(aggregate_id),
        payload=payload,
        idempotency_key=idempotency_key,
        status=OutboxStatus.PENDING.value,
        attempt_count=0,
        next_attempt_at=utcnow(),
    )
    db.add(event)
    await db.flush()
    return event


async def enqueue_promotion_usage(db: AsyncSession, booking_id: int) -> Optional[OutboxEvent]:
    return await enqueue(
        db,
        RECORD_PROMOTION_USAGE,
        booking_id,
        {"booking_id": booking_id},
        idempotency_key=f"booking:{booking_id}:promotion_usage",
    )


async def enqueue_promotion_reversal(db: AsyncSession, booking_id: int) -> Optional[OutboxEvent]:
    return await enqueue(
        db,
        REVERSE_PROMOTION_USAGE,
        booking_id,
        {"booking_id": booking_id},
        idempotency_key=f"booking:{booking_id}:promotion_reversal",
    )


async def enqueue_notification(
    db: AsyncSession,
    booking_id: int,
    user_id: int,
    kind: str,
    title: str,
    body: str,
    data: Optional[dict[str, Any]] = None,
) -> Optional[OutboxEvent]:
    return await enqueue(
        db,
        SEND_NOTIFICATION,
        booking_id,
        {"user_id": user_id, "title": title, "body": body, "data": data or {}},
        idempotency_key=f"booking:{booking_id}:notify:{kind}",
    )


def backoff_delay(attempt_count: int) -> timedelta:
    """30s, 60s, 120s, ... capped at one hour."""
    delay = timedelta(seconds=settings.OUTBOX_BASE_BACKOFF_SECONDS * (2 ** max(attempt_count - 1, 0)))
    return min(delay, MAX_BACKOFF)


async def _handle(db: AsyncSession, event: OutboxEvent, notifier: NotificationDispatcher):
    payload = event.payload or {}
    if event.event_type == RECORD_PROMOTION_USAGE:
        await promotion_ledger.record_usage(db, int(payload["booking_id"]))
    elif event.event_type == REVERSE_PROMOTION_USAGE:
        await promotion_ledger.reverse_usage(db, int(payload["booking_id"]))
    elif event.event_type == SEND_NOTIFICATION:
        await notifier.notify(
            int(payload["user_id"]),
            payload.get("title", ""),
            payload.get("body", ""),
            payload.get("data") or {},
        )
    else:
        raise ValueError(f"unknown outbox event type: {event.event_type}")


async def dispatch_event(
    db: AsyncSession,
    event_id: int,
    notifier: NotificationDispatcher,
    now: Optional[datetime] = None,
) -> bool:
    """
    Deliver one event and commit. Ledger writes commit together with the
    delivered mark. On failure the attempt is recorded and rescheduled, or the
    event is marked failed after OUTBOX_MAX_ATTEMPTS.
    """
    event = await db.get(OutboxEvent, event_id)
    if event is None or event.status != OutboxStatus.PENDING.value:
        return False
    event_type = event.event_type
    try:
        await _handle(db, event, notifier)
        event.status = OutboxStatus.DELIVERED.value
        event.attempt_count += 1
        event.last_error = None
        await db.commit()
    except Exception as exc:
        await db.rollback()
        failed = await db.get(OutboxEvent, event_id)
        if failed is None:
            raise
        failed.attempt_count += 1
        failed.last_error = f"{type(exc).__name__}: {exc}"[:1000]
        if failed.attempt_count >= settings.OUTBOX_MAX_ATTEMPTS:
            failed.status = OutboxStatus.FAILED.value
            record_outbox_dispatch("failed")
            logger.error(
                "outbox_event_failed",
                event_id=event_id,
                event_type=event_type,
                attempts=failed.attempt_count,
                error=str(exc),
            )
        else:
            failed.next_attempt_at = (now or utcnow()) + backoff_delay(failed.attempt_count)
            record_outbox_dispatch("retry")
            logger.warning(
                "outbox_dispatch_failed",
                event_id=event_id,
                event_type=event_type,
                attempt=failed.attempt_count,
                error=str(exc),
            )
        await db.commit()
        return False

    record_outbox_dispatch("delivered")
    logger.info("outbox_event_delivered", event_id=event_id, event_type=event_type)
    return True


async def dispatch_events(
    db: AsyncSession,
    events: Iterable[Optional[OutboxEvent]],
    notifier: NotificationDispatcher,
) -> int:
    """Deliver freshly committed events right away. Failures stay for the sweep."""
    # Ids first: a failed delivery rolls back and expires every loaded instance
    event_ids = [event.id for event in events if event is not None]
    delivered = 0
    for event_id in event_ids:
        if await dispatch_event(db, event_id, notifier):
            delivered += 1
    return delivered


async def dispatch_pending(
    db: AsyncSession,
    notifier: NotificationDispatcher,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> int:
    """Deliver due pending events. Returns how many were delivered."""
    now = now or utcnow()
    result = await db.execute(
        select(OutboxEvent.id)
        .where(
            OutboxEvent.status == OutboxStatus.PENDING.value,
            OutboxEvent.next_attempt_at <= now,
        )
        .order_by(OutboxEvent.id)
        .limit(limit or settings.OUTBOX_BATCH_SIZE)
    )
    event_ids = list(result.scalars().all())
    delivered = 0
    for event_id in event_ids:
        if await dispatch_event(db, event_id, notifier, now=now):
            delivered += 1
    if event_ids:
        logger.info("outbox_sweep_finished", due=len(event_ids), delivered=delivered)
    return delivered
