"""
Tests for outbox delivery/retry and the periodic booking sweeps.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from conftest import TestSessionLocal, future_window, insert_booking, settings
from rentals.db.base import utcnow
from rentals.models import Asset, Booking, OutboxEvent, Promotion
from rentals.services import outbox_service, sweep_service
from rentals.services.promotion_validator import SqlBookingHistory, evaluate

async def _notification_event(booking: Booking) -> int:
    async with TestSessionLocal() as session:
        event = await outbox_service.enqueue_notification(
            session, booking.id, booking.user_id, kind="confirmed", title="Booking Confirmed!", body="hi"
        )
        await session.commit()
        return event.id

def test_backoff_doubles_and_is_capped():
    assert outbox_service.backoff_delay(1) == timedelta(seconds=30)
    assert outbox_service.backoff_delay(2) == timedelta(seconds=60)
    assert outbox_service.backoff_delay(3) == timedelta(seconds=120)
    assert outbox_service.backoff_delay(20) == timedelta(hours=1)

@pytest.mark.asyncio
async def test_enqueue_is_idempotent_per_key(db_session, test_user, test_asset):
    start, end = future_window()
    booking = await insert_booking(db_session, test_user, test_asset, start, end)
    first = await outbox_service.enqueue_promotion_usage(db_session, booking.id)
    second = await outbox_service.enqueue_promotion_usage(db_session, booking.id)
    await db_session.commit()
    assert first is not None
    assert second is None

@pytest.mark.asyncio
async def test_failed_delivery_is_retried_later(db_session, test_user, test_asset, notifier):
    start, end = future_window()
    booking = await insert_booking(db_session, test_user, test_asset, start, end)
    event_id = await _notification_event(booking)

    notifier.fail = True
    async with TestSessionLocal() as session:
        assert await outbox_service.dispatch_event(session, event_id, notifier) is False

    async with TestSessionLocal() as session:
        event = await session.get(OutboxEvent, event_id)
        assert event.status == "pending"
        assert event.attempt_count == 1
        assert "push service unavailable" in event.last_error
        assert event.next_attempt_at > utcnow()

        # Not due yet
        assert await outbox_service.dispatch_pending(session, notifier) == 0

    notifier.fail = False
    async with TestSessionLocal() as session:
        delivered = await outbox_service.dispatch_pending(session, notifier, now=utcnow() + timedelta(minutes=5))
        assert delivered == 1

    async with TestSessionLocal() as session:
        event = await session.get(OutboxEvent, event_id)
        assert event.status == "delivered"
    assert notifier.sent[0]["title"] == "Booking Confirmed!"

@pytest.mark.asyncio
async def test_event_fails_after_max_attempts(db_session, test_user, test_asset, notifier, monkeypatch):
    monkeypatch.setattr(settings, "OUTBOX_MAX_ATTEMPTS", 2)
    start, end = future_window()
    booking = await insert_booking(db_session, test_user, test_asset, start, end)
    event_id = await _notification_event(booking)
    notifier.fail = True

    later = utcnow() + timedelta(hours=2)
    async with TestSessionLocal() as session:
        await outbox_service.dispatch_event(session, event_id, notifier)
        await outbox_service.dispatch_pending(session, notifier, now=later)

    async with TestSessionLocal() as session:
        event = await session.get(OutboxEvent, event_id)
        assert event.status == "failed"
        assert event.attempt_count == 2
        # Failed events are left alone
        assert await outbox_service.dispatch_pending(session, notifier, now=later + timedelta(hours=2)) == 0

@pytest.mark.asyncio
async def test_overdue_sweep(db_session, test_user, test_asset):
    now = datetime.now(timezone.utc)
    late = await insert_booking(
        db_session, test_user, test_asset, now - timedelta(hours=3), now - timedelta(hours=1), status="active"
    )
    running = await insert_booking(
        db_session, test_user, test_asset, now - timedelta(minutes=30), now + timedelta(hours=1)
    )

    async with TestSessionLocal() as session:
        moved = await sweep_service.mark_overdue_bookings(session, now=now)
    assert moved == [late.id]

    async with TestSessionLocal() as session:
        assert (await session.get(Booking, late.id)).status == "overdue"
        assert (await session.get(Booking, running.id)).status == "confirmed"
        events = (await session.execute(select(OutboxEvent))).scalars().all()
        assert [e.payload["title"] for e in events] == ["Ride Overdue"]

        # A second sweep finds nothing new
        assert await sweep_service.mark_overdue_bookings(session, now=now) == []

@pytest.mark.asyncio
async def test_overdue_booking_still_counts_toward_user_limit(
    db_session, test_user, test_asset, test_promotion
):
    now = datetime.now(timezone.utc)
    late = await insert_booking(
        db_session,
        test_user,
        test_asset,
        now - timedelta(hours=3),
        now - timedelta(hours=1),
        status="active",
        promotion=test_promotion,
    )

    async def check():
        async with TestSessionLocal() as session:
            promotion = await session.get(Promotion, test_promotion.id)
            asset = await session.get(Asset, test_asset.id)
            return await evaluate(promotion, test_user.id, asset, 20000, now, SqlBookingHistory(session))

    assert (await check()).code == "promotion_user_limit"

    async with TestSessionLocal() as session:
        assert await sweep_service.mark_overdue_bookings(session, now=now) == [late.id]

    after = await check()
    assert after.eligible is False
    assert after.code == "promotion_user_limit"

@pytest.mark.asyncio
async def test_payment_hold_expiry(db_session, test_user, test_asset):
    start, end = future_window()
    held = await insert_booking(db_session, test_user, test_asset, start, end, status="pending_payment")
    confirmed = await insert_booking(
        db_session, test_user, test_asset, start + timedelta(days=1), end + timedelta(days=1)
    )

    async with TestSessionLocal() as session:
        assert await sweep_service.expire_payment_holds(session) == []
        expired = await sweep_service.expire_payment_holds(session, now=utcnow() + timedelta(minutes=20))
    assert expired == [held.id]

    async with TestSessionLocal() as session:
        stored = await session.get(Booking, held.id)
        assert stored.status == "cancelled"
        assert stored.cancellation_reason == "payment_hold_expired"
        assert (await session.get(Booking, confirmed.id)).status == "confirmed"

async def _cancel_counted_booking(client, auth_headers, db_session, test_user, test_asset, test_promotion):
    test_promotion.usage_count = 1
    await db_session.commit()
    start, end = future_window()
    booking = await insert_booking(
        db_session, test_user, test_asset, start, end,
        promotion=test_promotion, promotion_usage_recorded=True,
    )
    response = await client.post(f"/api/v1/bookings/{booking.id}/cancel", headers=auth_headers)
    assert response.status_code == 200
    async with TestSessionLocal() as session:
        return (await session.get(Promotion, test_promotion.id)).usage_count

@pytest.mark.asyncio
async def test_cancellation_keeps_usage_by_default(
    client: AsyncClient, auth_headers, db_session, test_user, test_asset, test_promotion
):
    usage = await _cancel_counted_booking(client, auth_headers, db_session, test_user, test_asset, test_promotion)
    assert usage == 1

@pytest.mark.asyncio
async def test_cancellation_reverts_usage_when_enabled(
    client: AsyncClient, auth_headers, db_session, test_user, test_asset, test_promotion, monkeypatch
):
    monkeypatch.setattr(settings, "PROMOTION_REVERSAL_POLICY", "on_cancel")
    usage = await _cancel_counted_booking(client, auth_headers, db_session, test_user, test_asset, test_promotion)
    assert usage == 0
