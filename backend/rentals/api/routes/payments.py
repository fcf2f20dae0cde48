"""
Gateway webhook. Authenticated by the X-Razorpay-Signature HMAC, not a user token.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.api.deps import get_gateway, get_notifier
from rentals.db.session import get_db
from rentals.schemas.payment import WebhookAck
from rentals.services import payment_service
from rentals.services.interfaces.gateway import PaymentGateway
from rentals.services.interfaces.notifier import NotificationDispatcher

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/webhook", response_model=WebhookAck)
async def gateway_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    body = await request.body()
    outcome, events = await payment_service.handle_webhook(db, body, x_razorpay_signature, gateway)
    await payment_service.dispatch_after_commit(db, events, notifier)
    return WebhookAck(outcome=outcome)
