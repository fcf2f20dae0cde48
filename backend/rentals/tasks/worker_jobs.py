"""
Synchronous entry points for Celery workers.

Each call runs one sweep in a fresh event loop with its own NullPool engine;
pooled asyncpg connections cannot be shared across event loops.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from rentals.core.config import get_settings
from rentals.core.logging import get_logger, setup_logging
from rentals.services import outbox_service, sweep_service
from rentals.services.strategy_factory import get_notifier

logger = get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def _session() -> AsyncIterator[AsyncSession]:
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()


async def _mark_overdue() -> int:
    async with _session() as db:
        moved = await sweep_service.mark_overdue_bookings(db)
        await outbox_service.dispatch_pending(db, get_notifier())
        return len(moved)


async def _expire_holds() -> int:
    async with _session() as db:
        return len(await sweep_service.expire_payment_holds(db))


async def _dispatch_outbox(limit: int) -> int:
    async with _session() as db:
        return await outbox_service.dispatch_pending(db, get_notifier(), limit=limit)


def mark_overdue_bookings() -> dict:
    setup_logging()
    moved = asyncio.run(_mark_overdue())
    return {"marked_overdue": moved}


def expire_payment_holds() -> dict:
    setup_logging()
    expired = asyncio.run(_expire_holds())
    return {"expired": expired}


def dispatch_outbox(limit: int = 100) -> dict:
    setup_logging()
    delivered = asyncio.run(_dispatch_outbox(limit))
    return {"delivered": delivered}
