"""
Promotion eligibility rules.

The same `evaluate()` call is used when quoting and when creating a booking,
with the same clock value, so a quoted discount is never rejected later for
a rule-ordering or rounding difference.

Checks run in a fixed order and the first failure wins:
    1. active
    2. valid_from <= now <= valid_till
    3. usage_count < max_usage_count
    4. original amount >= min booking value
    5. user's confirmed/active/completed bookings with this promotion
       < user_max_usage_count
    6. eligibility class (firstRideOnly / specificAssetCategories /
       specificUsers / allUsers)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.models.asset import Asset
from rentals.models.booking import Booking, BookingStatus, PROMOTION_USAGE_STATUSES
from rentals.models.promotion import Eligibility, Promotion
from rentals.services.pricing import to_major


@dataclass(frozen=True)
class PromotionCheck:
    eligible: bool
    code: str = "eligible"
    reason: str = ""

    @classmethod
    def ok(cls) -> "PromotionCheck":
        return cls(eligible=True)

    @classmethod
    def fail(cls, code: str, reason: str) -> "PromotionCheck":
        return cls(eligible=False, code=code, reason=reason)


class BookingHistory(Protocol):
    async def count_promotion_uses(self, user_id: int, promotion_id: int) -> int: ...

    async def count_completed_rides(self, user_id: int) -> int: ...


class SqlBookingHistory:
    """Read-only booking history queries backed by the bookings table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_promotion_uses(self, user_id: int, promotion_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Booking.id)).where(
                Booking.user_id == user_id,
                Booking.promotion_id == promotion_id,
                Booking.status.in_(PROMOTION_USAGE_STATUSES),
            )
        )
        return int(result.scalar() or 0)

    async def count_completed_rides(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Booking.id)).where(
                Booking.user_id == user_id,
                Booking.status == BookingStatus.COMPLETED.value,
            )
        )
        return int(result.scalar() or 0)


def normalize_code(code: str) -> str:
    return code.strip().upper()


async def find_promotion_by_code(db: AsyncSession, code: str) -> Optional[Promotion]:
    result = await db.execute(select(Promotion).where(Promotion.code == normalize_code(code)))
    return result.scalar_one_or_none()


def _check_static(promotion: Promotion, now: datetime) -> Optional[PromotionCheck]:
    if not promotion.is_active:
        return PromotionCheck.fail("promotion_inactive", "Promo code is not active.")
    if not (promotion.valid_from <= now <= promotion.valid_till):
        return PromotionCheck.fail("promotion_expired", "Promo code is expired or not yet active.")
    if promotion.usage_count >= promotion.max_usage_count:
        return PromotionCheck.fail(
            "promotion_exhausted", "Promo code has reached its maximum usage limit."
        )
    return None


async def _check_user(
    promotion: Promotion,
    user_id: int,
    asset: Optional[Asset],
    history: BookingHistory,
) -> Optional[PromotionCheck]:
    used = await history.count_promotion_uses(user_id, promotion.id)
    if used >= promotion.user_max_usage_count:
        return PromotionCheck.fail(
            "promotion_user_limit",
            "You have already used this promo code the maximum number of times.",
        )

    eligibility = promotion.eligibility or Eligibility.ALL_USERS.value
    if eligibility == Eligibility.FIRST_RIDE_ONLY.value:
        if await history.count_completed_rides(user_id) > 0:
            return PromotionCheck.fail(
                "promotion_first_ride_only", "This promo code is valid for the first ride only."
            )
    elif eligibility == Eligibility.SPECIFIC_ASSET_CATEGORIES.value:
        categories = promotion.asset_categories or []
        if asset is None or asset.category not in categories:
            category = asset.category if asset is not None else "unknown"
            return PromotionCheck.fail(
                "promotion_category_mismatch",
                f"This promo code is not valid for the selected bike category ({category}).",
            )
    elif eligibility == Eligibility.SPECIFIC_USERS.value:
        if user_id not in [int(u) for u in (promotion.user_ids or [])]:
            return PromotionCheck.fail(
                "promotion_user_not_eligible", "This promo code is not applicable to your account."
            )
    return None


async def evaluate(
    promotion: Promotion,
    user_id: int,
    asset: Optional[Asset],
    original_minor: int,
    now: datetime,
    history: BookingHistory,
) -> PromotionCheck:
    failure = _check_static(promotion, now)
    if failure:
        return failure
    if original_minor < (promotion.min_booking_value_minor or 0):
        return PromotionCheck.fail(
            "promotion_min_value",
            f"Minimum booking value of {to_major(promotion.min_booking_value_minor)} "
            f"is required for this promo.",
        )
    failure = await _check_user(promotion, user_id, asset, history)
    return failure or PromotionCheck.ok()


async def evaluate_for_listing(
    promotion: Promotion,
    user_id: int,
    now: datetime,
    history: BookingHistory,
) -> PromotionCheck:
    """
    Amount- and asset-independent subset used to list promotions a user can
    still apply. Category promotions are listed; the category is checked at quote time.
    """
    failure = _check_static(promotion, now)
    if failure:
        return failure
    if promotion.eligibility == Eligibility.SPECIFIC_ASSET_CATEGORIES.value:
        used = await history.count_promotion_uses(user_id, promotion.id)
        if used >= promotion.user_max_usage_count:
            return PromotionCheck.fail("promotion_user_limit", "Usage limit reached.")
        return PromotionCheck.ok()
    failure = await _check_user(promotion, user_id, None, history)
    return failure or PromotionCheck.ok()
