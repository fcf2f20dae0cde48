"""
Pydantic schemas for payment verification.
"""

from pydantic import BaseModel, Field

from rentals.schemas.booking import BookingResponse


class PaymentVerify(BaseModel):
    booking_id: int
    gateway_order_id: str = Field(min_length=1, max_length=64)
    gateway_payment_id: str = Field(min_length=1, max_length=64)
    gateway_signature: str = Field(min_length=1, max_length=256)


class PaymentVerifyResponse(BaseModel):
    message: str
    already_confirmed: bool
    booking: BookingResponse


class WebhookAck(BaseModel):
    status: str = "ok"
    outcome: str
