"""
Admin/owner booking views and the status override.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.api.deps import get_notifier, require_staff
from rentals.db.session import get_db
from rentals.models.booking import BookingStatus
from rentals.models.user import User
from rentals.schemas.booking import BookingResponse, StatusOverride
from rentals.schemas.common import Page
from rentals.services import booking_service, payment_service
from rentals.services.interfaces.notifier import NotificationDispatcher

router = APIRouter(prefix="/admin/bookings", tags=["Admin Bookings"])


@router.get("/", response_model=Page[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    user_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    booking_reference: Optional[str] = Query(default=None, max_length=20),
    payment_id: Optional[str] = Query(default=None, max_length=64),
    sort_by: str = Query(default="createdAt:desc", pattern=r"^\w+(:(asc|desc))?$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    _: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """
    All bookings with filters. Reference and payment id match partially,
    case-insensitive. sort_by is "field:asc|desc".
    """
    result = await booking_service.admin_list_bookings(
        db,
        status=status_filter.value if status_filter else None,
        user_id=user_id,
        asset_id=asset_id,
        start_date=start_date,
        end_date=end_date,
        booking_reference=booking_reference,
        payment_id=payment_id,
        page=page,
        limit=limit,
        sort_by=sort_by,
    )
    items = [BookingResponse.from_booking(b) for b in result.items]
    return Page[BookingResponse].build(items, result.total, page, limit)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.get_booking_for(db, booking_id, admin)
    return BookingResponse.from_booking(booking)


@router.put("/{booking_id}/status", response_model=BookingResponse)
async def override_status(
    booking_id: int,
    request: StatusOverride,
    admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Move a booking through the transition table on behalf of staff."""
    booking, events = await booking_service.admin_override_status(
        db, booking_id, request.status, admin, reason=request.reason
    )
    response = BookingResponse.from_booking(booking)
    await payment_service.dispatch_after_commit(db, events, notifier)
    return response
