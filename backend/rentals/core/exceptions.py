"""
Error taxonomy for the booking core.

Services raise these directly (they are HTTPExceptions), so route handlers stay
thin. Every error carries a machine-readable ``code`` next to the human message:

    {"detail": {"code": "price_mismatch", "message": "..."}}
"""

from typing import Any, Optional

from fastapi import HTTPException, status


class BookingError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "booking_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ):
        self.code = code or self.default_code
        self.message = message
        detail: dict[str, Any] = {"code": self.code, "message": message}
        if extra:
            detail.update(extra)
        super().__init__(status_code=self.status_code, detail=detail)


class BookingValidationError(BookingError):
    """Malformed input or a bad time window. Never retried automatically."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class PermissionDeniedError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"


class ConflictError(BookingError):
    """The request is well-formed but collides with current state; re-quote."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class InvalidTransitionError(ConflictError):
    default_code = "invalid_transition"


class PaymentGatewayError(BookingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "payment_initiation_failed"


class PaymentVerificationError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "signature_mismatch"
