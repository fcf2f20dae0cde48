"""
Concurrency: overlapping bookings and the promotion usage cap under parallel writers.
"""

import asyncio

import pytest
from httpx import AsyncClient

from conftest import (
    TestSessionLocal,
    booking_payload,
    future_window,
    headers_for,
    insert_booking,
    make_promotion,
)
from rentals.models import Booking, Promotion, User
from rentals.services import promotion_ledger


@pytest.mark.asyncio
async def test_concurrent_overlapping_bookings_only_one_wins(
    client: AsyncClient, auth_headers, other_headers, test_asset
):
    """Two riders race for the same bike and window: exactly one booking is created."""
    start, end = future_window()
    payload = booking_payload(test_asset.id, start, end, "200.00")

    responses = await asyncio.gather(
        client.post("/api/v1/bookings/", json=payload, headers=auth_headers),
        client.post("/api/v1/bookings/", json=payload, headers=other_headers),
    )
    codes = sorted(r.status_code for r in responses)
    assert codes == [201, 409]
    loser = next(r for r in responses if r.status_code == 409)
    assert loser.json()["detail"]["code"] == "booking_conflict"


@pytest.mark.asyncio
async def test_many_riders_one_window(client: AsyncClient, db_session, test_asset):
    riders = []
    for i in range(6):
        user = User(email=f"rider{i}@example.com", full_name=f"Rider {i}", role="user")
        db_session.add(user)
        riders.append(user)
    await db_session.commit()

    start, end = future_window()
    payload = booking_payload(test_asset.id, start, end, "200.00")
    responses = await asyncio.gather(
        *[client.post("/api/v1/bookings/", json=payload, headers=headers_for(u)) for u in riders]
    )
    assert [r.status_code for r in responses].count(201) == 1
    assert [r.status_code for r in responses].count(409) == 5


@pytest.mark.asyncio
async def test_parallel_ledger_increments_respect_the_cap(db_session, test_promotion):
    """Ten writers, three slots: exactly three increments succeed."""
    test_promotion.max_usage_count = 3
    await db_session.commit()

    async def take_slot() -> bool:
        async with TestSessionLocal() as session:
            taken = await promotion_ledger.increment(session, test_promotion.id)
            await session.commit()
            return taken

    results = await asyncio.gather(*[take_slot() for _ in range(10)])
    assert results.count(True) == 3

    async with TestSessionLocal() as session:
        promotion = await session.get(Promotion, test_promotion.id)
        assert promotion.usage_count == 3


@pytest.mark.asyncio
async def test_usage_is_recorded_once_per_booking(db_session, test_user, test_asset, test_promotion):
    """Redelivered ledger events for one booking count it once."""
    start, end = future_window()
    booking = await insert_booking(db_session, test_user, test_asset, start, end, promotion=test_promotion)

    async def record() -> bool:
        async with TestSessionLocal() as session:
            recorded = await promotion_ledger.record_usage(session, booking.id)
            await session.commit()
            return recorded

    results = await asyncio.gather(*[record() for _ in range(5)])
    assert results.count(True) == 1

    async with TestSessionLocal() as session:
        promotion = await session.get(Promotion, test_promotion.id)
        stored = await session.get(Booking, booking.id)
        assert promotion.usage_count == 1
        assert stored.promotion_usage_recorded is True


@pytest.mark.asyncio
async def test_usage_past_the_cap_is_not_counted(db_session, test_user, test_asset):
    promotion = make_promotion(code="LAST1", max_usage_count=1, usage_count=1)
    db_session.add(promotion)
    await db_session.commit()
    await db_session.refresh(promotion)

    start, end = future_window()
    booking = await insert_booking(db_session, test_user, test_asset, start, end, promotion=promotion)

    async with TestSessionLocal() as session:
        assert await promotion_ledger.record_usage(session, booking.id) is False
        await session.commit()
        stored = await session.get(Booking, booking.id)
        assert stored.promotion_usage_recorded is False
        # Nothing was counted, so there is nothing to give back
        assert await promotion_ledger.reverse_usage(session, booking.id) is False
