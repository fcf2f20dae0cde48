"""
Pydantic schemas for booking-related request/response validation.

Amounts cross the API in major units (e.g. 170.00 INR) and are stored as
integer minor units.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from rentals.schemas.common import money


class QuoteRequest(BaseModel):
    asset_id: int
    start_time: datetime
    end_time: datetime
    promotion_code: Optional[str] = Field(default=None, max_length=50)


class AppliedPromotion(BaseModel):
    id: int
    code: str
    description: str
    discount_type: str


class QuoteResponse(BaseModel):
    asset_id: int
    start_time: datetime
    end_time: datetime
    currency: str
    duration_hours: int
    hourly_rate: Decimal
    original_amount: Decimal
    discount_amount: Decimal
    taxes: Decimal
    final_amount: Decimal
    promotion: Optional[AppliedPromotion] = None
    promotion_token: Optional[str] = None


class BookingCreate(BaseModel):
    asset_id: int
    start_time: datetime
    end_time: datetime
    final_amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    promotion_code: Optional[str] = Field(default=None, max_length=50)
    promotion_token: Optional[str] = None


class BookingResponse(BaseModel):
    id: int
    booking_reference: str
    user_id: int
    asset_id: int
    promotion_id: Optional[int] = None
    start_time: datetime
    end_time: datetime
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    currency: str
    original_amount: Decimal
    discount_amount: Decimal
    taxes: Decimal
    final_amount: Decimal
    overtime_charge: Decimal
    status: str
    cancellation_reason: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    end_ride_photo_ref: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            booking_reference=booking.booking_reference,
            user_id=booking.user_id,
            asset_id=booking.asset_id,
            promotion_id=booking.promotion_id,
            start_time=booking.start_time,
            end_time=booking.end_time,
            actual_start_time=booking.actual_start_time,
            actual_end_time=booking.actual_end_time,
            currency=booking.currency,
            original_amount=money(booking.original_amount_minor),
            discount_amount=money(booking.discount_amount_minor),
            taxes=money(booking.taxes_minor),
            final_amount=money(booking.final_amount_minor),
            overtime_charge=money(booking.overtime_charge_minor),
            status=booking.status,
            cancellation_reason=booking.cancellation_reason,
            gateway_order_id=booking.gateway_order_id,
            gateway_payment_id=booking.gateway_payment_id,
            end_ride_photo_ref=booking.end_ride_photo_ref,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class PaymentOrder(BaseModel):
    """What the client needs to open the gateway checkout."""
    order_id: str
    amount: int  # minor units, as the checkout widget expects
    currency: str
    key_id: str


class BookingCreateResponse(BaseModel):
    booking: BookingResponse
    payment: Optional[PaymentOrder] = None


class RideEnd(BaseModel):
    end_ride_photo_ref: Optional[str] = Field(default=None, max_length=512)


class RideSummaryResponse(BaseModel):
    booked_duration_hours: float
    actual_duration_minutes: int
    overtime_minutes: int
    overtime_charge: Decimal


class RideEndResponse(BaseModel):
    message: str
    booking: BookingResponse
    ride_summary: RideSummaryResponse


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class StatusOverride(BaseModel):
    status: str
    reason: Optional[str] = Field(default=None, max_length=255)
