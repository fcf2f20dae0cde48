"""
Asset availability.

Two windows overlap when existing.start < new.end AND existing.end > new.start
(half-open intervals, so back-to-back rentals do not conflict). Only bookings in
BLOCKING_STATUSES hold their window.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.models.asset import Asset
from rentals.models.booking import Booking, BLOCKING_STATUSES


def windows_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    return start_a < end_b and end_a > start_b


async def find_conflicting_booking(
    db: AsyncSession,
    asset_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> Optional[Booking]:
    query = select(Booking).where(
        Booking.asset_id == asset_id,
        Booking.status.in_(BLOCKING_STATUSES),
        Booking.start_time < end,
        Booking.end_time > start,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


class AssetDirectory:
    """Lookup of rentable assets. Catalog management lives elsewhere."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_asset(self, asset_id: int, for_update: bool = False) -> Optional[Asset]:
        query = select(Asset).where(Asset.id == asset_id)
        if for_update:
            # Row lock on PostgreSQL; ignored by SQLite
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()
