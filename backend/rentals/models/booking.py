"""
Booking model: one reservation of one asset for one time window.

Key design decisions:
- Money is stored as integer minor units; final amount is constrained to equal
  original - discount + taxes at the DB level
- Status is only written through services.booking_state.transition()
- Gateway identifiers are write-once; a booking is never re-billed
- Bookings are never deleted; cancelled rows keep promotion accounting intact
- promotion_usage_recorded / promotion_usage_reverted make ledger updates
  idempotent per booking
"""

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
)

from rentals.db.base import Base, TimestampMixin, UTCDateTime


class BookingStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"
    OVERDUE = "overdue"


# A booking in one of these states holds its window on the asset
BLOCKING_STATUSES = (
    BookingStatus.PENDING_PAYMENT.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.ACTIVE.value,
    BookingStatus.OVERDUE.value,
)

# States that count as "used" for per-user promotion limits
PROMOTION_USAGE_STATUSES = (
    BookingStatus.CONFIRMED.value,
    BookingStatus.ACTIVE.value,
    BookingStatus.OVERDUE.value,
    BookingStatus.COMPLETED.value,
)

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in BookingStatus)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_reference = Column(String(20), nullable=False, unique=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False, index=True)
    promotion_id = Column(Integer, ForeignKey("promotions.id"), nullable=True, index=True)

    start_time = Column(UTCDateTime(), nullable=False)
    end_time = Column(UTCDateTime(), nullable=False)
    actual_start_time = Column(UTCDateTime(), nullable=True)
    actual_end_time = Column(UTCDateTime(), nullable=True)

    currency = Column(String(3), nullable=False, default="INR")
    original_amount_minor = Column(Integer, nullable=False)
    discount_amount_minor = Column(Integer, nullable=False, default=0)
    taxes_minor = Column(Integer, nullable=False, default=0)
    final_amount_minor = Column(Integer, nullable=False)
    overtime_charge_minor = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING_PAYMENT.value, index=True)
    cancellation_reason = Column(String(255), nullable=True)

    gateway_order_id = Column(String(64), nullable=True, unique=True)
    gateway_payment_id = Column(String(64), nullable=True, index=True)
    gateway_signature = Column(String(128), nullable=True)

    end_ride_photo_ref = Column(String(512), nullable=True)

    promotion_usage_recorded = Column(Boolean, nullable=False, default=False)
    promotion_usage_reverted = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_booking_window"),
        CheckConstraint("original_amount_minor >= 0", name="check_booking_original_non_negative"),
        CheckConstraint("discount_amount_minor >= 0", name="check_booking_discount_non_negative"),
        CheckConstraint(
            "discount_amount_minor <= original_amount_minor",
            name="check_booking_discount_lte_original",
        ),
        CheckConstraint("taxes_minor >= 0", name="check_booking_taxes_non_negative"),
        CheckConstraint(
            "final_amount_minor = original_amount_minor - discount_amount_minor + taxes_minor",
            name="check_booking_final_amount",
        ),
        CheckConstraint("overtime_charge_minor >= 0", name="check_booking_overtime_non_negative"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="check_booking_status"),
        # Availability lookups: bookings of one asset by window
        Index("ix_bookings_asset_window", "asset_id", "start_time", "end_time"),
        # "My rentals" listing
        Index("ix_bookings_user_status_created", "user_id", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, ref={self.booking_reference}, asset={self.asset_id}, "
            f"status={self.status})>"
        )
