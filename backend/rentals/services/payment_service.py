"""
Payment reconciliation: the only path from pending_payment to confirmed.

Two entry points reach the same confirmation step:
- verify_payment(): the client posts the checkout widget's
  (order_id, payment_id, signature) triple
- handle_webhook(): the gateway posts payment.captured / order.paid

Both load the booking row FOR UPDATE, so two concurrent confirmations of one
booking serialize; the loser sees `confirmed` and returns it unchanged.
Payment identifiers are write-once: a confirmed booking never accepts a
second, different payment.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.config import get_settings
from rentals.core.exceptions import (
    BookingValidationError,
    ConflictError,
    NotFoundError,
    PaymentVerificationError,
    PermissionDeniedError,
)
from rentals.core.logging import get_logger
from rentals.core.metrics import record_payment_verification
from rentals.infrastructure.razorpay_client import (
    payment_signature,
    signatures_match,
    webhook_signature,
)
from rentals.models.asset import Asset
from rentals.models.booking import Booking, BookingStatus
from rentals.services import outbox_service
from rentals.services.booking_service import schedule_confirmation_effects
from rentals.services.booking_state import BookingEvent, transition
from rentals.services.interfaces.gateway import GatewayError, PaymentGateway

logger = get_logger(__name__)
settings = get_settings()

CONFIRMING_WEBHOOK_EVENTS = ("payment.captured", "order.paid")


@dataclass
class VerificationResult:
    booking: Booking
    already_confirmed: bool = False
    events: Optional[list] = None


async def _load_for_update(db: AsyncSession, **criteria) -> Optional[Booking]:
    query = select(Booking).filter_by(**criteria).with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def _confirm(db: AsyncSession, booking: Booking, payment_id: str, signature: Optional[str]) -> list:
    booking.gateway_payment_id = payment_id
    booking.gateway_signature = signature
    transition(booking, BookingEvent.PAYMENT_VERIFIED)
    asset = await db.get(Asset, booking.asset_id)
    events = await schedule_confirmation_effects(db, booking, asset.name if asset else None)
    await db.commit()
    return events


def _already_confirmed(booking: Booking, payment_id: str) -> bool:
    """
    True for a repeat of the confirmation that already happened.
    A different payment against a paid booking is a conflict.
    """
    if booking.gateway_payment_id and booking.gateway_payment_id != payment_id:
        record_payment_verification("already_paid")
        logger.warning(
            "payment_already_recorded",
            booking_id=booking.id,
            stored_payment_id=booking.gateway_payment_id,
            supplied_payment_id=payment_id,
        )
        raise ConflictError(
            "Booking is already paid with a different payment.",
            code="already_paid",
        )
    record_payment_verification("duplicate")
    logger.info("payment_verify_repeated", booking_id=booking.id, payment_id=payment_id)
    return True


async def verify_payment(
    db: AsyncSession,
    booking_id: int,
    order_id: str,
    payment_id: str,
    signature: str,
    user_id: int,
) -> VerificationResult:
    """
    Verify the checkout signature and confirm the booking.

    On a signature mismatch the booking moves to payment_failed and that is
    committed before PaymentVerificationError is raised.
    """
    booking = await _load_for_update(db, id=booking_id)
    if not booking:
        raise NotFoundError("Booking not found.")

    if booking.gateway_order_id != order_id:
        record_payment_verification("rejected")
        logger.warning(
            "payment_order_mismatch",
            booking_id=booking.id,
            stored_order_id=booking.gateway_order_id,
            supplied_order_id=order_id,
        )
        raise BookingValidationError("Order ID mismatch.", code="order_mismatch")

    if booking.user_id != user_id:
        record_payment_verification("rejected")
        raise PermissionDeniedError("Not authorized to verify payment for this booking.")

    if booking.status == BookingStatus.CONFIRMED.value and _already_confirmed(booking, payment_id):
        return VerificationResult(booking=booking, already_confirmed=True, events=[])

    if booking.status != BookingStatus.PENDING_PAYMENT.value:
        record_payment_verification("rejected")
        raise ConflictError(
            f"Booking is not awaiting payment (status: {booking.status}).",
            code="invalid_transition",
            extra={"current_status": booking.status},
        )

    expected = payment_signature(settings.RAZORPAY_KEY_SECRET, order_id, payment_id)
    if not signatures_match(expected, signature):
        transition(booking, BookingEvent.PAYMENT_FAILED)
        booking.gateway_payment_id = payment_id
        booking.gateway_signature = signature[:128] if signature else None
        await db.commit()
        record_payment_verification("signature_mismatch")
        logger.warning(
            "payment_signature_mismatch",
            booking_id=booking.id,
            order_id=order_id,
            payment_id=payment_id,
        )
        raise PaymentVerificationError("Invalid payment signature.")

    events = await _confirm(db, booking, payment_id, signature)
    record_payment_verification("confirmed")
    logger.info(
        "payment_verified",
        booking_id=booking.id,
        order_id=order_id,
        payment_id=payment_id,
        amount_minor=booking.final_amount_minor,
    )
    return VerificationResult(booking=booking, events=events)


def verify_webhook_signature(body: bytes, signature: Optional[str]) -> bool:
    expected = webhook_signature(settings.RAZORPAY_WEBHOOK_SECRET, body)
    return signatures_match(expected, signature)


def _webhook_ids(payload: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    entities = payload.get("payload") or {}
    payment = (entities.get("payment") or {}).get("entity") or {}
    order = (entities.get("order") or {}).get("entity") or {}
    order_id = payment.get("order_id") or order.get("id")
    return order_id, payment.get("id")


async def handle_webhook(
    db: AsyncSession,
    body: bytes,
    signature: Optional[str],
    gateway: PaymentGateway,
) -> tuple[str, list]:
    """
    Confirm a booking from a gateway webhook.

    Returns (outcome, outbox events). Unknown events and orders are
    acknowledged; the gateway stops retrying on a 2xx.
    """
    if not verify_webhook_signature(body, signature):
        record_payment_verification("webhook_rejected")
        logger.warning("webhook_signature_invalid")
        raise PaymentVerificationError("Invalid webhook signature.", code="invalid_webhook_signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise BookingValidationError("Webhook body is not valid JSON.", code="invalid_webhook_body")

    event_name = payload.get("event")
    if event_name not in CONFIRMING_WEBHOOK_EVENTS:
        logger.info("webhook_ignored", webhook_event=event_name)
        return "ignored", []

    order_id, payment_id = _webhook_ids(payload)
    if not order_id or not payment_id:
        logger.warning("webhook_missing_ids", webhook_event=event_name)
        return "ignored", []

    booking = await _load_for_update(db, gateway_order_id=order_id)
    if not booking:
        logger.info("webhook_unknown_order", order_id=order_id)
        return "unknown_order", []

    if booking.status == BookingStatus.CONFIRMED.value:
        try:
            _already_confirmed(booking, payment_id)
        except ConflictError:
            return "already_paid", []
        return "already_confirmed", []
    if booking.status != BookingStatus.PENDING_PAYMENT.value:
        logger.warning(
            "webhook_for_closed_booking",
            booking_id=booking.id,
            status=booking.status,
            payment_id=payment_id,
        )
        return "ignored", []

    # Release the row lock while we talk to the gateway
    await db.rollback()
    try:
        order = await gateway.fetch_order(order_id)
    except GatewayError as exc:
        logger.error("webhook_order_lookup_failed", order_id=order_id, error=str(exc))
        raise ConflictError("Could not confirm order with gateway, retry later.", code="gateway_unavailable")

    booking = await _load_for_update(db, gateway_order_id=order_id)
    if booking is None or booking.status != BookingStatus.PENDING_PAYMENT.value:
        return "already_confirmed", []

    if not order.is_paid or order.amount_minor != booking.final_amount_minor:
        logger.warning(
            "webhook_order_not_paid",
            booking_id=booking.id,
            order_status=order.status,
            order_amount_minor=order.amount_minor,
            booking_amount_minor=booking.final_amount_minor,
        )
        return "not_paid", []

    events = await _confirm(db, booking, payment_id, None)
    record_payment_verification("confirmed")
    logger.info(
        "payment_confirmed_by_webhook",
        booking_id=booking.id,
        order_id=order_id,
        payment_id=payment_id,
    )
    return "confirmed", events


async def dispatch_after_commit(db: AsyncSession, events: Optional[list], notifier) -> int:
    """Best-effort delivery of side effects; failures stay pending for the sweep."""
    if not events:
        return 0
    return await outbox_service.dispatch_events(db, events, notifier)
