"""
Booking lifecycle: quote, create, ride start/end, cancellation and queries.

CONCURRENCY STRATEGY: Per-Asset Single Writer
=============================================

Problem:
  Two users request overlapping windows on the same bike at the same time.
  Both run the availability query, both see no conflict, both insert.
  Result: Double booking.

Solution:
  Everything between "is the window free?" and "the booking row is
  committed" runs while holding the asset's lock (see
  services/interfaces/asset_lock.py):

  1. Acquire lock for asset_id (asyncio.Lock locally, Redis lock across workers)
  2. SELECT the asset (FOR UPDATE on PostgreSQL)
  3. Availability check over blocking statuses
  4. Price + promotion re-validation + client amount cross-check
  5. Gateway order (pending_payment only)
  6. INSERT + COMMIT
  7. Release lock

  The gateway call sits inside the lock, so a slow gateway slows bookings of
  that one bike only. A gateway failure raises before the INSERT: nothing is
  persisted.

Promotions are re-validated here with the same validator the quote used; the
promotion's usage counter is NOT touched at creation. It is counted when the
booking is confirmed (see payment_service.py and promotion_ledger.py).
"""

import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.config import get_settings
from rentals.core.exceptions import (
    BookingValidationError,
    ConflictError,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
)
from rentals.core.logging import get_logger
from rentals.core.metrics import booking_latency, record_booking_attempt
from rentals.core.security import create_quote_token, decode_quote_token
from rentals.db.base import utcnow
from rentals.models.asset import Asset
from rentals.models.booking import Booking, BookingStatus
from rentals.models.promotion import Promotion
from rentals.models.user import User
from rentals.services import outbox_service
from rentals.services.availability import AssetDirectory, find_conflicting_booking
from rentals.services.booking_state import (
    BookingEvent,
    OVERRIDE_EVENTS,
    initial_status,
    transition,
)
from rentals.services.interfaces.asset_lock import AssetLock
from rentals.services.interfaces.gateway import GatewayError, PaymentGateway
from rentals.services.pricing import (
    PromotionTerms,
    Quote,
    overtime_charge,
    quote_amounts,
    to_major,
)
from rentals.services.promotion_validator import (
    PromotionCheck,
    SqlBookingHistory,
    evaluate,
    find_promotion_by_code,
)

logger = get_logger(__name__)
settings = get_settings()

REFERENCE_PREFIX = "BK-"
REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_LENGTH = 8
MAX_REFERENCE_ATTEMPTS = 5


@dataclass
class PricedBooking:
    asset: Asset
    quote: Quote
    promotion: Optional[Promotion] = None
    promotion_check: Optional[PromotionCheck] = None
    promotion_token: Optional[str] = None


@dataclass
class RideSummary:
    booked_duration_hours: float
    actual_duration_minutes: int
    overtime_minutes: int
    overtime_charge_minor: int


@dataclass
class BookingPage:
    items: list
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _validate_window(start: datetime, end: datetime, now: datetime):
    if start.tzinfo is None or end.tzinfo is None:
        raise BookingValidationError("Start and end times must include a timezone offset.")
    if end <= start:
        raise BookingValidationError(
            "End time must be after start time.", code="invalid_window"
        )
    if start < now - timedelta(minutes=settings.BOOKING_START_GRACE_MINUTES):
        raise BookingValidationError(
            "Start time cannot be in the past.", code="start_in_past"
        )


async def _get_bookable_asset(db: AsyncSession, asset_id: int, for_update: bool = False) -> Asset:
    asset = await AssetDirectory(db).get_asset(asset_id, for_update=for_update)
    if not asset:
        raise BookingValidationError(f"Bike {asset_id} not found.", code="unknown_asset")
    if not asset.is_bookable:
        raise ConflictError(
            f"Bike is currently {asset.availability_state} and cannot be booked.",
            code="asset_unavailable",
        )
    return asset


async def _resolve_promotion_code(
    db: AsyncSession,
    user_id: int,
    asset_id: int,
    start: datetime,
    end: datetime,
    promotion_code: Optional[str],
    promotion_token: Optional[str],
) -> Optional[str]:
    """The quote token carries the code; it must match the request it was issued for."""
    if not promotion_token:
        return promotion_code
    claims = decode_quote_token(promotion_token)
    if claims is None:
        raise ConflictError("Quote has expired, please re-quote.", code="quote_expired")
    if (
        str(claims.get("sub")) != str(user_id)
        or claims.get("asset_id") != asset_id
        or claims.get("start") != _iso(start)
        or claims.get("end") != _iso(end)
    ):
        raise BookingValidationError(
            "Quote token does not match this booking request.", code="quote_mismatch"
        )
    token_code = claims.get("promotion_code")
    if promotion_code and token_code and promotion_code.strip().upper() != token_code:
        raise BookingValidationError(
            "Quote token does not match the promo code.", code="quote_mismatch"
        )
    return token_code or promotion_code


async def price_booking(
    db: AsyncSession,
    user_id: int,
    asset: Asset,
    start: datetime,
    end: datetime,
    promotion_code: Optional[str],
    now: datetime,
) -> PricedBooking:
    """
    Price a window and apply a promotion. Shared by quote and create so the
    two can never disagree on rule order or rounding.
    """
    base = quote_amounts(asset.hourly_rate_minor, start, end, tax_rate_percent=settings.TAX_RATE_PERCENT)
    if not promotion_code:
        return PricedBooking(asset=asset, quote=base)

    promotion = await find_promotion_by_code(db, promotion_code)
    if not promotion:
        raise BookingValidationError("Invalid promo code.", code="unknown_promotion")

    check = await evaluate(
        promotion,
        user_id,
        asset,
        base.original_minor,
        now,
        SqlBookingHistory(db),
    )
    if not check.eligible:
        logger.info(
            "promotion_rejected",
            user_id=user_id,
            promotion_code=promotion.code,
            reason=check.code,
        )
        raise ConflictError(
            check.reason,
            code="promotion_ineligible",
            extra={"reason": check.code},
        )

    quote = quote_amounts(
        asset.hourly_rate_minor,
        start,
        end,
        terms=PromotionTerms.from_promotion(promotion),
        tax_rate_percent=settings.TAX_RATE_PERCENT,
    )
    return PricedBooking(asset=asset, quote=quote, promotion=promotion, promotion_check=check)


async def _allocate_reference(db: AsyncSession) -> str:
    """BK-XXXXXXXX, unique. The column's unique constraint backs this check."""
    for _ in range(MAX_REFERENCE_ATTEMPTS):
        candidate = REFERENCE_PREFIX + "".join(
            secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH)
        )
        taken = await db.execute(
            select(Booking.id).where(Booking.booking_reference == candidate)
        )
        if taken.scalar_one_or_none() is None:
            return candidate
    raise ConflictError("Could not allocate a booking reference, please retry.", code="reference_exhausted")


async def schedule_confirmation_effects(db: AsyncSession, booking: Booking, asset_name: Optional[str] = None) -> list:
    """
    Outbox rows for a booking that just became confirmed, in the caller's
    transaction: one ledger increment if a promotion was applied, and the
    "Booking Confirmed!" notification.
    """
    events = []
    if booking.promotion_id is not None:
        events.append(await outbox_service.enqueue_promotion_usage(db, booking.id))
    events.append(
        await outbox_service.enqueue_notification(
            db,
            booking.id,
            booking.user_id,
            kind="confirmed",
            title="Booking Confirmed!",
            body=(
                f"Your booking for {asset_name or 'your bike'} "
                f"(Ref: {booking.booking_reference}) is confirmed."
            ),
            data={"screen": "BookingDetails", "bookingId": str(booking.id)},
        )
    )
    return events


async def _schedule_cancellation_effects(db: AsyncSession, booking: Booking) -> list:
    events = []
    if settings.PROMOTION_REVERSAL_POLICY == "on_cancel" and booking.promotion_usage_recorded:
        events.append(await outbox_service.enqueue_promotion_reversal(db, booking.id))
    if booking.gateway_payment_id:
        # Refund processing is an administrative follow-up
        logger.warning(
            "booking_refund_required",
            booking_id=booking.id,
            payment_id=booking.gateway_payment_id,
            amount_minor=booking.final_amount_minor,
        )
    events.append(
        await outbox_service.enqueue_notification(
            db,
            booking.id,
            booking.user_id,
            kind="cancelled",
            title="Booking Cancelled",
            body=f"Your booking (Ref: {booking.booking_reference}) has been cancelled.",
            data={"screen": "BookingDetails", "bookingId": str(booking.id)},
        )
    )
    return events


async def _load_booking(db: AsyncSession, booking_id: int, for_update: bool = False) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found.")
    return booking


def _ensure_owner(booking: Booking, user_id: int):
    if booking.user_id != user_id:
        raise PermissionDeniedError("Not authorized to access this booking.")


# ---------------------------------------------------------------------------
# Quote / create
# ---------------------------------------------------------------------------


async def quote_booking(
    db: AsyncSession,
    user_id: int,
    asset_id: int,
    start: datetime,
    end: datetime,
    promotion_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PricedBooking:
    """Price a prospective booking. Read-only; does not check availability."""
    now = now or utcnow()
    _validate_window(start, end, now)
    asset = await _get_bookable_asset(db, asset_id)
    priced = await price_booking(db, user_id, asset, start, end, promotion_code, now)
    if priced.promotion is not None:
        priced.promotion_token = create_quote_token(
            {
                "sub": str(user_id),
                "asset_id": asset_id,
                "start": _iso(start),
                "end": _iso(end),
                "promotion_id": priced.promotion.id,
                "promotion_code": priced.promotion.code,
                "final_amount_minor": priced.quote.final_minor,
            }
        )
    return priced


async def create_booking(
    db: AsyncSession,
    user_id: int,
    asset_id: int,
    start: datetime,
    end: datetime,
    client_final_amount_minor: int,
    gateway: PaymentGateway,
    lock: AssetLock,
    promotion_code: Optional[str] = None,
    promotion_token: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Booking, list]:
    """
    Create a booking for `asset_id` over [start, end).

    Returns the booking and the outbox events to dispatch after commit
    (only a free booking, confirmed immediately, has any).
    """
    started = time.perf_counter()
    now = now or utcnow()
    _validate_window(start, end, now)
    code = await _resolve_promotion_code(
        db, user_id, asset_id, start, end, promotion_code, promotion_token
    )

    async with lock.hold(asset_id):
        asset = await _get_bookable_asset(db, asset_id, for_update=True)

        conflict = await find_conflicting_booking(db, asset_id, start, end)
        if conflict:
            record_booking_attempt("conflict")
            logger.warning(
                "booking_failed_overlap",
                asset_id=asset_id,
                user_id=user_id,
                conflicting_booking_id=conflict.id,
            )
            raise ConflictError(
                "Bike is already booked for the selected time slot.",
                code="booking_conflict",
            )

        priced = await price_booking(db, user_id, asset, start, end, code, now)
        quote = priced.quote

        if abs(quote.final_minor - client_final_amount_minor) > settings.PRICE_TOLERANCE_MINOR:
            record_booking_attempt("price_mismatch")
            logger.warning(
                "booking_failed_price_mismatch",
                asset_id=asset_id,
                user_id=user_id,
                client_final_minor=client_final_amount_minor,
                server_final_minor=quote.final_minor,
            )
            raise ConflictError(
                "Price mismatch. Please refresh and try again.",
                code="price_mismatch",
                extra={
                    "client_final_amount": str(to_major(client_final_amount_minor)),
                    "server_final_amount": str(to_major(quote.final_minor)),
                },
            )

        reference = await _allocate_reference(db)
        status = initial_status(quote.final_minor)

        order_id = None
        if status == BookingStatus.PENDING_PAYMENT:
            try:
                order = await gateway.create_order(
                    quote.final_minor, settings.CURRENCY, receipt=f"rcpt_{reference}"
                )
            except GatewayError as exc:
                record_booking_attempt("gateway_error")
                logger.error(
                    "booking_failed_gateway",
                    asset_id=asset_id,
                    user_id=user_id,
                    reference=reference,
                    error=str(exc),
                )
                raise PaymentGatewayError(
                    "Could not initiate payment. Please try again later."
                ) from exc
            order_id = order.id

        booking = Booking(
            booking_reference=reference,
            user_id=user_id,
            asset_id=asset_id,
            promotion_id=priced.promotion.id if priced.promotion else None,
            start_time=start,
            end_time=end,
            currency=settings.CURRENCY,
            original_amount_minor=quote.original_minor,
            discount_amount_minor=quote.discount_minor,
            taxes_minor=quote.taxes_minor,
            final_amount_minor=quote.final_minor,
            overtime_charge_minor=0,
            status=status.value,
            gateway_order_id=order_id,
            promotion_usage_recorded=False,
            promotion_usage_reverted=False,
        )
        db.add(booking)
        try:
            await db.flush()
            events = []
            if status == BookingStatus.CONFIRMED:
                events = await schedule_confirmation_effects(db, booking, asset.name)
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            record_booking_attempt("conflict")
            logger.error("booking_insert_failed", asset_id=asset_id, reference=reference, error=str(exc))
            raise ConflictError("Booking could not be saved, please retry.", code="booking_conflict")

    booking_latency.observe(time.perf_counter() - started)
    record_booking_attempt(status.value)
    logger.info(
        "booking_created",
        booking_id=booking.id,
        reference=reference,
        user_id=user_id,
        asset_id=asset_id,
        status=status.value,
        final_amount_minor=quote.final_minor,
        promotion_id=booking.promotion_id,
    )
    return booking, events


# ---------------------------------------------------------------------------
# Ride start / end, cancellation
# ---------------------------------------------------------------------------


async def start_ride(
    db: AsyncSession, booking_id: int, user_id: int, now: Optional[datetime] = None
) -> Booking:
    booking = await _load_booking(db, booking_id, for_update=True)
    _ensure_owner(booking, user_id)
    transition(booking, BookingEvent.RIDE_STARTED)
    booking.actual_start_time = now or utcnow()
    await db.commit()
    return booking


async def end_ride(
    db: AsyncSession,
    booking_id: int,
    user_id: int,
    photo_ref: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Booking, RideSummary]:
    """
    Record the ride end and overtime. Overtime is charged at the asset's
    overtime rate but only recorded here; collection is a separate action.
    Ending an already completed ride returns it unchanged.
    """
    booking = await _load_booking(db, booking_id, for_update=True)
    _ensure_owner(booking, user_id)

    if booking.status != BookingStatus.COMPLETED.value:
        asset = await db.get(Asset, booking.asset_id)
        actual_end = now or utcnow()
        actual_start = booking.actual_start_time or booking.start_time
        if actual_start > actual_end:
            actual_start = actual_end

        transition(booking, BookingEvent.RIDE_ENDED)
        _, charge = overtime_charge(
            booking.end_time,
            actual_end,
            asset.overtime_hourly_rate_minor if asset else 0,
        )
        booking.actual_start_time = actual_start
        booking.actual_end_time = actual_end
        booking.overtime_charge_minor = charge
        if photo_ref:
            booking.end_ride_photo_ref = photo_ref
        await db.commit()
        logger.info(
            "ride_ended",
            booking_id=booking.id,
            overtime_charge_minor=charge,
        )
    else:
        logger.info("ride_end_repeated", booking_id=booking.id)

    return booking, ride_summary(booking)


def ride_summary(booking: Booking) -> RideSummary:
    booked_minutes = (booking.end_time - booking.start_time) / timedelta(minutes=1)
    actual_minutes = 0
    if booking.actual_start_time and booking.actual_end_time:
        actual_minutes = round(
            (booking.actual_end_time - booking.actual_start_time) / timedelta(minutes=1)
        )
    overtime_minutes = 0
    if booking.actual_end_time and booking.actual_end_time > booking.end_time:
        overtime_minutes = -((booking.end_time - booking.actual_end_time) // timedelta(minutes=1))
    return RideSummary(
        booked_duration_hours=round(booked_minutes / 60, 2),
        actual_duration_minutes=actual_minutes,
        overtime_minutes=overtime_minutes,
        overtime_charge_minor=booking.overtime_charge_minor or 0,
    )


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    actor: User,
    reason: Optional[str] = None,
) -> tuple[Booking, list]:
    """
    Users cancel their own pending or confirmed bookings; staff may cancel
    any booking the transition table allows (including active and overdue).
    """
    booking = await _load_booking(db, booking_id, for_update=True)
    if not actor.is_staff:
        _ensure_owner(booking, actor.id)
        if booking.status not in (
            BookingStatus.PENDING_PAYMENT.value,
            BookingStatus.CONFIRMED.value,
        ):
            raise ConflictError(
                f"Booking in status '{booking.status}' cannot be cancelled.",
                code="invalid_transition",
                extra={"current_status": booking.status},
            )
    transition(booking, BookingEvent.CANCELLED)
    default_reason = "cancelled_by_admin" if actor.is_staff else "cancelled_by_user"
    booking.cancellation_reason = (reason or default_reason)[:255]
    events = await _schedule_cancellation_effects(db, booking)
    await db.commit()
    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        actor_id=actor.id,
        reason=booking.cancellation_reason,
    )
    return booking, events


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_booking_for(db: AsyncSession, booking_id: int, actor: User) -> Booking:
    booking = await _load_booking(db, booking_id)
    if not actor.is_staff:
        _ensure_owner(booking, actor.id)
    return booking


async def _paginate(db: AsyncSession, query, page: int, limit: int, order_by) -> BookingPage:
    total = await db.execute(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(*order_by).offset((page - 1) * limit).limit(limit)
    )
    return BookingPage(
        items=list(result.scalars().all()),
        total=int(total.scalar() or 0),
        page=page,
        limit=limit,
    )


async def list_user_bookings(
    db: AsyncSession,
    user_id: int,
    status: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
) -> BookingPage:
    query = select(Booking).where(Booking.user_id == user_id)
    if status:
        query = query.where(Booking.status == status)
    if date_from:
        query = query.where(Booking.start_time >= date_from)
    if date_to:
        query = query.where(Booking.end_time <= date_to)
    return await _paginate(db, query, page, limit, [Booking.created_at.desc(), Booking.id.desc()])


SORTABLE_FIELDS = {
    "createdAt": Booking.created_at,
    "created_at": Booking.created_at,
    "startTime": Booking.start_time,
    "start_time": Booking.start_time,
    "endTime": Booking.end_time,
    "end_time": Booking.end_time,
    "finalAmount": Booking.final_amount_minor,
    "final_amount": Booking.final_amount_minor,
    "status": Booking.status,
    "bookingReference": Booking.booking_reference,
    "booking_reference": Booking.booking_reference,
}


def parse_sort(sort_by: Optional[str]):
    """'field:desc' -> order_by clause. Unknown fields fall back to createdAt."""
    field, _, direction = (sort_by or "createdAt:desc").partition(":")
    column = SORTABLE_FIELDS.get(field, Booking.created_at)
    ordered = column.asc() if direction.lower() == "asc" else column.desc()
    return [ordered, Booking.id.desc()]


async def admin_list_bookings(
    db: AsyncSession,
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    booking_reference: Optional[str] = None,
    payment_id: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    sort_by: Optional[str] = None,
) -> BookingPage:
    query = select(Booking)
    if status:
        query = query.where(Booking.status == status)
    if user_id:
        query = query.where(Booking.user_id == user_id)
    if asset_id:
        query = query.where(Booking.asset_id == asset_id)
    # Bookings starting inside the range
    if start_date:
        query = query.where(Booking.start_time >= start_date)
    if end_date:
        query = query.where(Booking.start_time <= end_date)
    if booking_reference:
        query = query.where(Booking.booking_reference.ilike(f"%{booking_reference}%"))
    if payment_id:
        query = query.where(Booking.gateway_payment_id.ilike(f"%{payment_id}%"))
    return await _paginate(db, query, page, limit, parse_sort(sort_by))


async def admin_override_status(
    db: AsyncSession,
    booking_id: int,
    target_status: str,
    actor: User,
    reason: Optional[str] = None,
) -> tuple[Booking, list]:
    """
    Administrative status change. Goes through the same transition table as
    every other path; the side effects of the reached state are scheduled
    the same way too.
    """
    try:
        target = BookingStatus(target_status)
    except ValueError:
        raise BookingValidationError(f"Invalid status: {target_status}.", code="invalid_status")

    booking = await _load_booking(db, booking_id, for_update=True)
    if booking.status == target.value:
        return booking, []

    event = OVERRIDE_EVENTS.get(target)
    if event is None:
        raise ConflictError(
            f"Status '{target.value}' cannot be set manually.",
            code="invalid_transition",
            extra={"current_status": booking.status},
        )
    previous = booking.status
    transition(booking, event)

    events = []
    if target == BookingStatus.CANCELLED:
        booking.cancellation_reason = (reason or "cancelled_by_admin")[:255]
        events = await _schedule_cancellation_effects(db, booking)
    elif target == BookingStatus.COMPLETED and booking.actual_end_time is None:
        ended = utcnow()
        booking.actual_start_time = min(booking.actual_start_time or booking.start_time, ended)
        booking.actual_end_time = ended

    await db.commit()
    logger.info(
        "booking_status_overridden",
        booking_id=booking.id,
        actor_id=actor.id,
        from_status=previous,
        to_status=target.value,
        reason=reason,
    )
    return booking, events
