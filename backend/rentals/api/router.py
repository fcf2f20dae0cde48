"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from rentals.api.routes import admin_bookings, bookings, payments, promotions

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(admin_bookings.router)
api_router.include_router(promotions.router)
api_router.include_router(payments.router)
