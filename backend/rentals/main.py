"""
Bike Rental Booking API - Main Application Entry Point

The booking core of a bike rental service:
- Quotes and bookings priced server-side, with promo codes
- Per-asset locking so a bike is never double-booked
- Razorpay order creation, signature verification and webhooks
- Promotion usage ledger and notifications through a transactional outbox
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from rentals.api.middleware import RequestLoggingMiddleware
from rentals.api.router import api_router
from rentals.core.config import get_settings
from rentals.core.logging import get_logger, setup_logging
from rentals.core.metrics import metrics_endpoint
from rentals.db.session import engine
from rentals.infrastructure.redis_client import RedisClient
from rentals.services.strategy_factory import shutdown_strategies

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        gateway_mode=settings.GATEWAY_MODE,
        asset_lock=settings.ASSET_LOCK_STRATEGY,
    )

    yield

    await shutdown_strategies()
    await RedisClient.close()
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Bike rental booking, pricing and payment reconciliation API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    database = "ok"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        get_logger(__name__).warning("health_database_unreachable", error=str(exc))
        database = "unreachable"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": database,
    }


@app.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
