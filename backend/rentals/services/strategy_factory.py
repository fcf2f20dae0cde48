"""
Strategy factory.
Configures which asset lock, payment gateway and notifier implementations to use.

All three are process-wide singletons; the API exposes them as FastAPI
dependencies (see api/deps.py) so tests can override them.
"""

from typing import Optional

from rentals.core.config import get_settings
from rentals.infrastructure.razorpay_client import RazorpayGateway, SandboxGateway
from rentals.infrastructure.redis_client import get_redis
from rentals.services.interfaces.asset_lock import AssetLock, LocalAssetLock, RedisAssetLock
from rentals.services.interfaces.gateway import PaymentGateway
from rentals.services.interfaces.notifier import LogNotificationDispatcher, NotificationDispatcher


def get_asset_lock_strategy() -> AssetLock:
    """
    Strategy selection via ASSET_LOCK_STRATEGY:
    - local: one asyncio.Lock per asset (single API process)
    - redis: Redis lock (several workers or hosts)
    """
    settings = get_settings()
    if settings.ASSET_LOCK_STRATEGY == "redis" and settings.REDIS_ENABLED:
        return RedisAssetLock(get_redis(), timeout_seconds=settings.ASSET_LOCK_TIMEOUT_SECONDS)
    return LocalAssetLock(timeout_seconds=settings.ASSET_LOCK_TIMEOUT_SECONDS)


def get_gateway_strategy() -> PaymentGateway:
    settings = get_settings()
    if settings.GATEWAY_MODE == "sandbox":
        return SandboxGateway()
    return RazorpayGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        base_url=settings.RAZORPAY_BASE_URL,
        timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
        max_retries=settings.GATEWAY_MAX_RETRIES,
    )


# Singleton instances
_lock: Optional[AssetLock] = None
_gateway: Optional[PaymentGateway] = None
_notifier: Optional[NotificationDispatcher] = None


def get_asset_lock() -> AssetLock:
    global _lock
    if _lock is None:
        _lock = get_asset_lock_strategy()
    return _lock


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = get_gateway_strategy()
    return _gateway


def get_notifier() -> NotificationDispatcher:
    global _notifier
    if _notifier is None:
        _notifier = LogNotificationDispatcher()
    return _notifier


async def shutdown_strategies():
    """Close network clients held by the singletons (app shutdown)."""
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None
