"""
Booking endpoints: quote, create, payment verification, ride start/end,
cancellation and "my bookings".
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.api.deps import get_asset_lock, get_current_user, get_gateway, get_notifier
from rentals.core.config import get_settings
from rentals.db.session import get_db
from rentals.models.booking import BookingStatus
from rentals.models.user import User
from rentals.schemas.booking import (
    AppliedPromotion,
    BookingCancel,
    BookingCreate,
    BookingCreateResponse,
    BookingResponse,
    PaymentOrder,
    QuoteRequest,
    QuoteResponse,
    RideEnd,
    RideEndResponse,
    RideSummaryResponse,
)
from rentals.schemas.common import Page, money
from rentals.schemas.payment import PaymentVerify, PaymentVerifyResponse
from rentals.services import booking_service, payment_service
from rentals.services.interfaces.asset_lock import AssetLock
from rentals.services.interfaces.gateway import PaymentGateway
from rentals.services.interfaces.notifier import NotificationDispatcher
from rentals.services.pricing import to_minor

settings = get_settings()
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/quote", response_model=QuoteResponse)
async def quote_booking(
    request: QuoteRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Price a window, optionally with a promo code. The returned
    promotion_token can be sent back on create instead of the code.
    """
    priced = await booking_service.quote_booking(
        db, user.id, request.asset_id, request.start_time, request.end_time, request.promotion_code
    )
    quote = priced.quote
    promotion = None
    if priced.promotion:
        promotion = AppliedPromotion(
            id=priced.promotion.id,
            code=priced.promotion.code,
            description=priced.promotion.description or "",
            discount_type=priced.promotion.discount_type,
        )
    return QuoteResponse(
        asset_id=request.asset_id,
        start_time=request.start_time,
        end_time=request.end_time,
        currency=settings.CURRENCY,
        duration_hours=quote.duration_units,
        hourly_rate=money(quote.hourly_rate_minor),
        original_amount=money(quote.original_minor),
        discount_amount=money(quote.discount_minor),
        taxes=money(quote.taxes_minor),
        final_amount=money(quote.final_minor),
        promotion=promotion,
        promotion_token=priced.promotion_token,
    )


@router.post("/", response_model=BookingCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: BookingCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    lock: AssetLock = Depends(get_asset_lock),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """
    Create a booking. The server re-prices the window; a final amount that
    differs from the client's by more than one paisa is rejected with 409.

    Paid bookings come back pending_payment with the gateway order to pay;
    fully discounted bookings are confirmed immediately.
    """
    booking, events = await booking_service.create_booking(
        db,
        user.id,
        request.asset_id,
        request.start_time,
        request.end_time,
        client_final_amount_minor=to_minor(request.final_amount),
        gateway=gateway,
        lock=lock,
        promotion_code=request.promotion_code,
        promotion_token=request.promotion_token,
    )
    payment = None
    if booking.status == BookingStatus.PENDING_PAYMENT.value:
        payment = PaymentOrder(
            order_id=booking.gateway_order_id,
            amount=booking.final_amount_minor,
            currency=booking.currency,
            key_id=settings.RAZORPAY_KEY_ID,
        )
    response = BookingCreateResponse(booking=BookingResponse.from_booking(booking), payment=payment)
    # Side effects run after the response is built; a failed delivery expires loaded rows
    await payment_service.dispatch_after_commit(db, events, notifier)
    return response


@router.post("/verify-payment", response_model=PaymentVerifyResponse)
async def verify_payment(
    request: PaymentVerify,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Confirm a booking with the checkout's order/payment/signature triple."""
    result = await payment_service.verify_payment(
        db,
        request.booking_id,
        request.gateway_order_id,
        request.gateway_payment_id,
        request.gateway_signature,
        user.id,
    )
    message = (
        "Booking already confirmed."
        if result.already_confirmed
        else "Booking confirmed successfully!"
    )
    response = PaymentVerifyResponse(
        message=message,
        already_confirmed=result.already_confirmed,
        booking=BookingResponse.from_booking(result.booking),
    )
    await payment_service.dispatch_after_commit(db, result.events, notifier)
    return response


@router.get("/", response_model=Page[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    date_from: Optional[datetime] = Query(default=None, alias="from"),
    date_to: Optional[datetime] = Query(default=None, alias="to"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookings of the authenticated user, newest first."""
    result = await booking_service.list_user_bookings(
        db,
        user.id,
        status=status_filter.value if status_filter else None,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    items = [BookingResponse.from_booking(b) for b in result.items]
    return Page[BookingResponse].build(items, result.total, page, limit)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.get_booking_for(db, booking_id, user)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/start-ride", response_model=BookingResponse)
async def start_ride(
    booking_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.start_ride(db, booking_id, user.id)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/end-ride", response_model=RideEndResponse)
async def end_ride(
    booking_id: int,
    request: Optional[RideEnd] = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """End the ride. Overtime is computed and recorded, not charged here."""
    booking, summary = await booking_service.end_ride(
        db, booking_id, user.id, photo_ref=request.end_ride_photo_ref if request else None
    )
    return RideEndResponse(
        message="Ride ended successfully.",
        booking=BookingResponse.from_booking(booking),
        ride_summary=RideSummaryResponse(
            booked_duration_hours=summary.booked_duration_hours,
            actual_duration_minutes=summary.actual_duration_minutes,
            overtime_minutes=summary.overtime_minutes,
            overtime_charge=money(summary.overtime_charge_minor),
        ),
    )


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    request: Optional[BookingCancel] = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    booking, events = await booking_service.cancel_booking(
        db, booking_id, user, reason=request.reason if request else None
    )
    response = BookingResponse.from_booking(booking)
    await payment_service.dispatch_after_commit(db, events, notifier)
    return response
