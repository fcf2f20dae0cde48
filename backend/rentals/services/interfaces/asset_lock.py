"""
Per-asset single-writer lock.

Booking creation holds the asset's lock across
availability check -> pricing -> gateway order -> insert -> commit,
so two overlapping requests for one bike can never both pass the check.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from redis.exceptions import LockError

from rentals.core.exceptions import ConflictError
from rentals.core.logging import get_logger
from rentals.core.metrics import asset_lock_wait

logger = get_logger(__name__)


class AssetLock(ABC):
    """
    Implementations:
    - LocalAssetLock: asyncio.Lock per asset, single process
    - RedisAssetLock: redis lock with timeout, any number of workers
    """

    def __init__(self, timeout_seconds: float = 30.0):
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    async def _acquire(self, asset_id: int) -> Optional[Any]:
        """Return a handle for `_release`, or None on timeout."""
        pass

    @abstractmethod
    async def _release(self, asset_id: int, handle: Any):
        pass

    @asynccontextmanager
    async def hold(self, asset_id: int) -> AsyncIterator[None]:
        """
        Usage:
            async with lock.hold(asset.id):
                ...

        Raises ConflictError("asset_busy") if the lock is not obtained in time.
        """
        started = time.perf_counter()
        handle = await self._acquire(asset_id)
        asset_lock_wait.observe(time.perf_counter() - started)
        if handle is None:
            logger.warning("asset_lock_timeout", asset_id=asset_id, timeout=self.timeout_seconds)
            raise ConflictError(
                "Bike is being booked by someone else, please retry.",
                code="asset_busy",
            )
        try:
            yield
        finally:
            await self._release(asset_id, handle)


class LocalAssetLock(AssetLock):

    def __init__(self, timeout_seconds: float = 30.0):
        super().__init__(timeout_seconds)
        self._locks: dict[int, asyncio.Lock] = {}

    async def _acquire(self, asset_id: int) -> Optional[asyncio.Lock]:
        lock = self._locks.setdefault(asset_id, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), self.timeout_seconds)
        except asyncio.TimeoutError:
            return None
        return lock

    async def _release(self, asset_id: int, handle: asyncio.Lock):
        handle.release()


class RedisAssetLock(AssetLock):
    """
    redis-py lock keyed by asset. The key auto-expires after
    `timeout_seconds` so a crashed worker cannot block an asset forever.
    """

    def __init__(self, redis, timeout_seconds: float = 30.0, key_prefix: str = "asset-lock"):
        super().__init__(timeout_seconds)
        self.redis = redis
        self.key_prefix = key_prefix

    async def _acquire(self, asset_id: int):
        lock = self.redis.lock(
            f"{self.key_prefix}:{asset_id}",
            timeout=self.timeout_seconds,
            blocking_timeout=self.timeout_seconds,
        )
        if not await lock.acquire():
            return None
        return lock

    async def _release(self, asset_id: int, handle):
        try:
            await handle.release()
        except LockError as exc:
            # Expired before release; the next writer already owns the key
            logger.warning("asset_lock_release_failed", asset_id=asset_id, error=str(exc))
