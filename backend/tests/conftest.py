"""
Pytest fixtures for test database, client, and authentication.

Each test gets fresh tables. The HTTP client opens one session per request,
like production, so concurrent requests in a test really are concurrent
transactions. The payment gateway, notifier and asset lock are replaced
with in-process fakes.

TEST_DATABASE_URL defaults to a local SQLite file; point it at PostgreSQL
(postgresql+asyncpg://...) to run the same suite against the real database.
"""

import os

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test_rentals.db")

# Settings are read at import time; configure before importing the app
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ASSET_LOCK_STRATEGY", "local")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("GATEWAY_MODE", "sandbox")

import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from rentals.main import app
from rentals.api.deps import get_asset_lock, get_gateway, get_notifier
from rentals.core.config import get_settings
from rentals.core.security import create_access_token
from rentals.db.base import Base
from rentals.db.session import get_db
from rentals.infrastructure.razorpay_client import payment_signature
from rentals.models import Asset, Booking, Promotion, User
from rentals.services.interfaces.asset_lock import LocalAssetLock
from rentals.services.interfaces.gateway import GatewayError, GatewayOrder, PaymentGateway
from rentals.services.interfaces.notifier import NotificationDispatcher

settings = get_settings()

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
TestSessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


class FakeGateway(PaymentGateway):
    """Gateway double: records orders, can be told to fail."""

    def __init__(self):
        self.orders: dict[str, GatewayOrder] = {}
        self.fail_create = False
        self.fail_fetch = False

    async def create_order(self, amount_minor, currency, receipt):
        if self.fail_create:
            raise GatewayError("gateway_timeout: /orders timed out")
        order = GatewayOrder(
            id=f"order_{secrets.token_hex(7)}",
            amount_minor=amount_minor,
            currency=currency,
            receipt=receipt,
        )
        self.orders[order.id] = order
        return order

    async def fetch_order(self, order_id):
        if self.fail_fetch or order_id not in self.orders:
            raise GatewayError("gateway_error_404")
        return self.orders[order_id]

    def mark_paid(self, order_id: str):
        self.orders[order_id].status = "paid"


class RecordingNotifier(NotificationDispatcher):
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def notify(self, user_id, title, body, data=None):
        if self.fail:
            raise RuntimeError("push service unavailable")
        self.sent.append({"user_id": user_id, "title": title, "body": body, "data": data or {}})


def sign(order_id: str, payment_id: str) -> str:
    """Signature the checkout widget would send back for a genuine payment."""
    return payment_signature(settings.RAZORPAY_KEY_SECRET, order_id, payment_id)


def future_window(hours: float = 3, minutes: int = 10, days: int = 1):
    start = (datetime.now(timezone.utc) + timedelta(days=days)).replace(minute=0, second=0, microsecond=0)
    return start, start + timedelta(hours=hours, minutes=minutes)


def booking_payload(asset_id: int, start: datetime, end: datetime, final_amount: str, **extra) -> dict:
    return {
        "asset_id": asset_id,
        "start_time": start.isoformat(),
        "end_time": end.isoformat(),
        "final_amount": final_amount,
        **extra,
    }


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession, gateway: FakeGateway, notifier: RecordingNotifier
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with a fresh DB session per request and faked collaborators."""

    async def override_get_db():
        async with TestSessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    lock = LocalAssetLock(timeout_seconds=5)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_asset_lock] = lambda: lock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _add(db_session: AsyncSession, obj):
    db_session.add(obj)
    await db_session.commit()
    await db_session.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _add(db_session, User(email="rider@example.com", full_name="Test Rider", role="user"))


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _add(db_session, User(email="other@example.com", full_name="Other Rider", role="user"))


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _add(db_session, User(email="admin@example.com", full_name="Admin", role="admin"))


def headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(user.id)})}"}


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict:
    """Authorization headers with Bearer token."""
    return headers_for(test_user)


@pytest_asyncio.fixture
async def other_headers(other_user: User) -> dict:
    return headers_for(other_user)


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict:
    return headers_for(admin_user)


@pytest_asyncio.fixture
async def test_asset(db_session: AsyncSession) -> Asset:
    """A scooter at Rs 50/h, overtime Rs 20/h."""
    return await _add(
        db_session,
        Asset(
            name="Activa 6G",
            category="scooter",
            hourly_rate_minor=5000,
            overtime_hourly_rate_minor=2000,
            availability_state="available",
        ),
    )


@pytest_asyncio.fixture
async def maintenance_asset(db_session: AsyncSession) -> Asset:
    return await _add(
        db_session,
        Asset(
            name="Classic 350",
            category="cruiser",
            hourly_rate_minor=12000,
            overtime_hourly_rate_minor=15000,
            availability_state="maintenance",
        ),
    )


def make_promotion(now: Optional[datetime] = None, **overrides) -> Promotion:
    now = now or datetime.now(timezone.utc)
    fields = dict(
        code="SAVE20",
        description="20% off, up to Rs 30",
        discount_type="percentage",
        discount_value=Decimal("20"),
        max_discount_minor=3000,
        min_booking_value_minor=0,
        valid_from=now - timedelta(days=1),
        valid_till=now + timedelta(days=30),
        max_usage_count=100,
        user_max_usage_count=1,
        usage_count=0,
        is_active=True,
        eligibility="allUsers",
        asset_categories=[],
        user_ids=[],
    )
    fields.update(overrides)
    return Promotion(**fields)


@pytest_asyncio.fixture
async def test_promotion(db_session: AsyncSession) -> Promotion:
    return await _add(db_session, make_promotion())


async def insert_booking(
    db_session: AsyncSession,
    user: User,
    asset: Asset,
    start: datetime,
    end: datetime,
    status: str = "confirmed",
    promotion: Optional[Promotion] = None,
    **extra,
) -> Booking:
    """Insert a booking directly, bypassing the create path (e.g. with past windows)."""
    original = extra.pop("original_amount_minor", 15000)
    discount = extra.pop("discount_amount_minor", 0)
    booking = Booking(
        booking_reference=f"BK-{secrets.token_hex(4).upper()}",
        user_id=user.id,
        asset_id=asset.id,
        promotion_id=promotion.id if promotion else None,
        start_time=start,
        end_time=end,
        currency="INR",
        original_amount_minor=original,
        discount_amount_minor=discount,
        taxes_minor=0,
        final_amount_minor=original - discount,
        overtime_charge_minor=0,
        status=status,
        promotion_usage_recorded=extra.pop("promotion_usage_recorded", False),
        promotion_usage_reverted=False,
        **extra,
    )
    return await _add(db_session, booking)
