"""
Pydantic schemas for promotion administration.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from rentals.models.promotion import DiscountType, Eligibility
from rentals.schemas.common import money
from rentals.services.pricing import to_minor


class PromotionBase(BaseModel):
    description: str = Field(default="", max_length=500)
    discount_type: DiscountType
    discount_value: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    min_booking_value: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    valid_from: datetime
    valid_till: datetime
    max_usage_count: int = Field(ge=1)
    user_max_usage_count: int = Field(default=1, ge=1)
    is_active: bool = True
    eligibility: Eligibility = Eligibility.ALL_USERS
    asset_categories: list[str] = Field(default_factory=list)
    user_ids: list[int] = Field(default_factory=list)


class PromotionCreate(PromotionBase):
    code: str = Field(min_length=2, max_length=50)

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_till < self.valid_from:
            raise ValueError("valid_till must not be before valid_from")
        return self

    def to_model_fields(self) -> dict[str, Any]:
        return _to_model_fields(self.model_dump())


class PromotionUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    min_booking_value: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    valid_from: Optional[datetime] = None
    valid_till: Optional[datetime] = None
    max_usage_count: Optional[int] = Field(default=None, ge=1)
    user_max_usage_count: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None
    eligibility: Optional[Eligibility] = None
    asset_categories: Optional[list[str]] = None
    user_ids: Optional[list[int]] = None

    def to_model_fields(self) -> dict[str, Any]:
        return _to_model_fields(self.model_dump(exclude_unset=True))


def _to_model_fields(data: dict[str, Any]) -> dict[str, Any]:
    """API field names/units -> Promotion column names/units."""
    fields = dict(data)
    if "max_discount_amount" in fields:
        value = fields.pop("max_discount_amount")
        fields["max_discount_minor"] = to_minor(value) if value is not None else None
    if "min_booking_value" in fields:
        value = fields.pop("min_booking_value")
        fields["min_booking_value_minor"] = to_minor(value or 0)
    for key in ("discount_type", "eligibility"):
        if fields.get(key) is not None:
            fields[key] = fields[key].value
    return fields


class PromotionResponse(BaseModel):
    id: int
    code: str
    description: str
    discount_type: str
    discount_value: Decimal
    max_discount_amount: Optional[Decimal] = None
    min_booking_value: Decimal
    valid_from: datetime
    valid_till: datetime
    max_usage_count: int
    user_max_usage_count: int
    usage_count: int
    is_active: bool
    eligibility: str
    asset_categories: list[str]
    user_ids: list[int]
    created_at: datetime

    @classmethod
    def from_promotion(cls, promotion) -> "PromotionResponse":
        return cls(
            id=promotion.id,
            code=promotion.code,
            description=promotion.description or "",
            discount_type=promotion.discount_type,
            discount_value=Decimal(str(promotion.discount_value)),
            max_discount_amount=(
                money(promotion.max_discount_minor)
                if promotion.max_discount_minor is not None
                else None
            ),
            min_booking_value=money(promotion.min_booking_value_minor),
            valid_from=promotion.valid_from,
            valid_till=promotion.valid_till,
            max_usage_count=promotion.max_usage_count,
            user_max_usage_count=promotion.user_max_usage_count,
            usage_count=promotion.usage_count,
            is_active=promotion.is_active,
            eligibility=promotion.eligibility,
            asset_categories=list(promotion.asset_categories or []),
            user_ids=[int(u) for u in (promotion.user_ids or [])],
            created_at=promotion.created_at,
        )


class AvailablePromotion(BaseModel):
    code: str
    description: str
    discount_type: str
    discount_value: Decimal
    max_discount_amount: Optional[Decimal] = None
    min_booking_value: Decimal
    valid_till: datetime
