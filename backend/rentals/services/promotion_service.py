"""
Promotion administration and the user-facing "available promotions" list.

Promotions are never deleted: DELETE deactivates, so bookings that used a
code keep a valid reference. `usage_count` is not writable here; only the
ledger changes it.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.exceptions import BookingValidationError, ConflictError, NotFoundError
from rentals.core.logging import get_logger
from rentals.db.base import utcnow
from rentals.models.promotion import DiscountType, Eligibility, Promotion
from rentals.services.promotion_validator import (
    SqlBookingHistory,
    evaluate_for_listing,
    normalize_code,
)

logger = get_logger(__name__)


def _check_terms(promotion: Promotion):
    if promotion.valid_till < promotion.valid_from:
        raise BookingValidationError("valid_till must not be before valid_from.", code="invalid_promotion")
    if promotion.discount_type == DiscountType.PERCENTAGE.value and promotion.discount_value > 100:
        raise BookingValidationError("Percentage discount cannot exceed 100.", code="invalid_promotion")
    if promotion.max_usage_count < max(promotion.usage_count or 0, 1):
        raise BookingValidationError(
            "max_usage_count cannot be below the current usage count.", code="invalid_promotion"
        )
    if (
        promotion.eligibility == Eligibility.SPECIFIC_ASSET_CATEGORIES.value
        and not promotion.asset_categories
    ):
        raise BookingValidationError(
            "asset_categories is required for specificAssetCategories.", code="invalid_promotion"
        )
    if promotion.eligibility == Eligibility.SPECIFIC_USERS.value and not promotion.user_ids:
        raise BookingValidationError("user_ids is required for specificUsers.", code="invalid_promotion")


async def create_promotion(db: AsyncSession, data: dict[str, Any], created_by: int) -> Promotion:
    fields = {**data, "code": normalize_code(data["code"]), "usage_count": 0, "created_by": created_by}
    fields.setdefault("is_active", True)
    promotion = Promotion(**fields)
    _check_terms(promotion)
    db.add(promotion)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Promo code {promotion.code} already exists.", code="duplicate_code")
    await db.refresh(promotion)
    logger.info("promotion_created", promotion_id=promotion.id, code=promotion.code, created_by=created_by)
    return promotion


async def get_promotion(db: AsyncSession, promotion_id: int) -> Promotion:
    promotion = await db.get(Promotion, promotion_id)
    if not promotion:
        raise NotFoundError("Promotion not found.")
    return promotion


async def list_promotions(
    db: AsyncSession,
    is_active: Optional[bool] = None,
    code: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Promotion], int]:
    query = select(Promotion)
    if is_active is not None:
        query = query.where(Promotion.is_active.is_(is_active))
    if code:
        query = query.where(Promotion.code.ilike(f"%{code.strip()}%"))
    total = await db.execute(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Promotion.created_at.desc(), Promotion.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total.scalar() or 0)


async def update_promotion(db: AsyncSession, promotion_id: int, changes: dict[str, Any]) -> Promotion:
    promotion = await get_promotion(db, promotion_id)
    changes = dict(changes)
    changes.pop("usage_count", None)
    if "code" in changes and changes["code"] is not None:
        changes["code"] = normalize_code(changes["code"])
    for field, value in changes.items():
        setattr(promotion, field, value)
    _check_terms(promotion)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Promo code already exists.", code="duplicate_code")
    await db.refresh(promotion)
    logger.info("promotion_updated", promotion_id=promotion.id, fields=sorted(changes))
    return promotion


async def deactivate_promotion(db: AsyncSession, promotion_id: int) -> Promotion:
    promotion = await get_promotion(db, promotion_id)
    promotion.is_active = False
    await db.commit()
    logger.info("promotion_deactivated", promotion_id=promotion.id, code=promotion.code)
    return promotion


async def available_promotions(
    db: AsyncSession, user_id: int, now: Optional[datetime] = None
) -> list[Promotion]:
    """Active, in-window promotions the user could still apply."""
    now = now or utcnow()
    result = await db.execute(
        select(Promotion)
        .where(
            Promotion.is_active.is_(True),
            Promotion.valid_from <= now,
            Promotion.valid_till >= now,
            Promotion.usage_count < Promotion.max_usage_count,
        )
        .order_by(Promotion.valid_till.asc())
    )
    history = SqlBookingHistory(db)
    available = []
    for promotion in result.scalars().all():
        check = await evaluate_for_listing(promotion, user_id, now, history)
        if check.eligible:
            available.append(promotion)
    return available
