from rentals.schemas.booking import (
    BookingCreate, BookingCreateResponse, BookingResponse, QuoteRequest, QuoteResponse,
)
from rentals.schemas.payment import PaymentVerify, PaymentVerifyResponse
from rentals.schemas.promotion import PromotionCreate, PromotionResponse, PromotionUpdate

__all__ = [
    "BookingCreate", "BookingCreateResponse", "BookingResponse", "QuoteRequest", "QuoteResponse",
    "PaymentVerify", "PaymentVerifyResponse",
    "PromotionCreate", "PromotionResponse", "PromotionUpdate",
]
