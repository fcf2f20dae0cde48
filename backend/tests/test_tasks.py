"""
Tests for the Celery wiring of the periodic sweeps.
"""

from contextlib import asynccontextmanager

import pytest

from conftest import TestSessionLocal, future_window, insert_booking
from rentals.services import outbox_service
from rentals.tasks import jobs, worker_jobs
from rentals.tasks.celery_app import celery


def test_beat_schedule_targets_registered_tasks():
    scheduled = {entry["task"] for entry in celery.conf.beat_schedule.values()}
    assert scheduled == {
        jobs.mark_overdue_bookings.name,
        jobs.expire_payment_holds.name,
        jobs.dispatch_outbox.name,
    }
    assert scheduled <= set(celery.tasks.keys())


@pytest.fixture
def worker_session(monkeypatch):
    @asynccontextmanager
    async def session():
        async with TestSessionLocal() as db:
            yield db

    monkeypatch.setattr(worker_jobs, "_session", session)


@pytest.mark.asyncio
async def test_outbox_job_delivers_pending_events(db_session, worker_session, test_user, test_asset):
    start, end = future_window()
    booking = await insert_booking(db_session, test_user, test_asset, start, end)
    await outbox_service.enqueue_notification(
        db_session, booking.id, test_user.id, kind="confirmed", title="Booking Confirmed!", body="hi"
    )
    await db_session.commit()

    assert await worker_jobs._dispatch_outbox(limit=10) == 1
    assert await worker_jobs._dispatch_outbox(limit=10) == 0


@pytest.mark.asyncio
async def test_overdue_job_marks_and_notifies(db_session, worker_session, test_user, test_asset):
    start, end = future_window(days=-1)
    await insert_booking(db_session, test_user, test_asset, start, end)
    assert await worker_jobs._mark_overdue() == 1


@pytest.mark.asyncio
async def test_hold_job_leaves_fresh_holds(db_session, worker_session, test_user, test_asset):
    start, end = future_window()
    await insert_booking(db_session, test_user, test_asset, start, end, status="pending_payment")
    assert await worker_jobs._expire_holds() == 0
