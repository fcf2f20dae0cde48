"""
Promotion endpoints. Administration is staff-only; any signed-in user can
list the promotions currently available to them.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.api.deps import get_current_user, require_staff
from rentals.db.session import get_db
from rentals.models.user import User
from rentals.schemas.common import Page, money
from rentals.schemas.promotion import (
    AvailablePromotion,
    PromotionCreate,
    PromotionResponse,
    PromotionUpdate,
)
from rentals.services import promotion_service

router = APIRouter(prefix="/promotions", tags=["Promotions"])


@router.post("/", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    request: PromotionCreate,
    admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    promotion = await promotion_service.create_promotion(db, request.to_model_fields(), admin.id)
    return PromotionResponse.from_promotion(promotion)


@router.get("/", response_model=Page[PromotionResponse])
async def list_promotions(
    is_active: Optional[bool] = None,
    code: Optional[str] = Query(default=None, max_length=50),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    _: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    items, total = await promotion_service.list_promotions(
        db, is_active=is_active, code=code, page=page, limit=limit
    )
    data = [PromotionResponse.from_promotion(p) for p in items]
    return Page[PromotionResponse].build(data, total, page, limit)


@router.get("/available", response_model=list[AvailablePromotion])
async def available_promotions(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Promotions the caller can still apply. Amount limits are checked at quote time."""
    promotions = await promotion_service.available_promotions(db, user.id)
    return [
        AvailablePromotion(
            code=p.code,
            description=p.description or "",
            discount_type=p.discount_type,
            discount_value=p.discount_value,
            max_discount_amount=money(p.max_discount_minor) if p.max_discount_minor is not None else None,
            min_booking_value=money(p.min_booking_value_minor),
            valid_till=p.valid_till,
        )
        for p in promotions
    ]


@router.get("/{promotion_id}", response_model=PromotionResponse)
async def get_promotion(
    promotion_id: int,
    _: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    promotion = await promotion_service.get_promotion(db, promotion_id)
    return PromotionResponse.from_promotion(promotion)


@router.patch("/{promotion_id}", response_model=PromotionResponse)
async def update_promotion(
    promotion_id: int,
    request: PromotionUpdate,
    _: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    promotion = await promotion_service.update_promotion(db, promotion_id, request.to_model_fields())
    return PromotionResponse.from_promotion(promotion)


@router.delete("/{promotion_id}", response_model=PromotionResponse)
async def deactivate_promotion(
    promotion_id: int,
    _: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate. Promotions are never deleted."""
    promotion = await promotion_service.deactivate_promotion(db, promotion_id)
    return PromotionResponse.from_promotion(promotion)
