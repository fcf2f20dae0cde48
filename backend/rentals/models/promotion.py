"""
Promotion (promo code) model.

Key design decisions:
- `code` is stored upper-case and unique
- `usage_count` is only changed through services.promotion_ledger, with an
  atomic conditional UPDATE; the CHECK constraint is the final safety net
- Promotions are deactivated, never deleted, so historical bookings keep
  their reference
"""

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
)

from rentals.db.base import Base, TimestampMixin, UTCDateTime


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixedAmount"


class Eligibility(str, enum.Enum):
    ALL_USERS = "allUsers"
    FIRST_RIDE_ONLY = "firstRideOnly"
    SPECIFIC_ASSET_CATEGORIES = "specificAssetCategories"
    SPECIFIC_USERS = "specificUsers"


class Promotion(Base, TimestampMixin):
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), nullable=False, unique=True, index=True)
    description = Column(String(500), nullable=False, default="")

    discount_type = Column(String(20), nullable=False)
    # Percent for "percentage", major currency units for "fixedAmount"
    discount_value = Column(Numeric(12, 2), nullable=False)
    max_discount_minor = Column(Integer, nullable=True)
    min_booking_value_minor = Column(Integer, nullable=False, default=0)

    valid_from = Column(UTCDateTime(), nullable=False)
    valid_till = Column(UTCDateTime(), nullable=False)

    max_usage_count = Column(Integer, nullable=False)
    user_max_usage_count = Column(Integer, nullable=False, default=1)
    usage_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    eligibility = Column(String(40), nullable=False, default=Eligibility.ALL_USERS.value)
    asset_categories = Column(JSON, nullable=False, default=list)
    user_ids = Column(JSON, nullable=False, default=list)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="check_promotion_usage_non_negative"),
        CheckConstraint("usage_count <= max_usage_count", name="check_promotion_usage_lte_max"),
        CheckConstraint("max_usage_count >= 1", name="check_promotion_max_usage_positive"),
        CheckConstraint("user_max_usage_count >= 1", name="check_promotion_user_max_positive"),
        CheckConstraint("discount_value >= 0", name="check_promotion_discount_non_negative"),
        CheckConstraint("valid_till >= valid_from", name="check_promotion_validity_window"),
        CheckConstraint(
            "discount_type IN ('percentage', 'fixedAmount')",
            name="check_promotion_discount_type",
        ),
        Index("ix_promotions_active_valid_till", "is_active", "valid_till"),
    )

    def __repr__(self) -> str:
        return f"<Promotion(id={self.id}, code={self.code}, used={self.usage_count}/{self.max_usage_count})>"
