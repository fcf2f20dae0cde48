from celery import Celery

from rentals.core.config import get_settings

settings = get_settings()

celery = Celery(
    "rentals",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["rentals.tasks.jobs"],
)

celery.conf.timezone = "UTC"

celery.conf.beat_schedule = {
    "mark-overdue-every-minute": {
        "task": "rentals.tasks.jobs.mark_overdue_bookings",
        "schedule": 60.0,
    },
    "expire-payment-holds-every-minute": {
        "task": "rentals.tasks.jobs.expire_payment_holds",
        "schedule": 60.0,
    },
    "dispatch-outbox-every-30-seconds": {
        "task": "rentals.tasks.jobs.dispatch_outbox",
        "schedule": 30.0,
        "kwargs": {"limit": settings.OUTBOX_BATCH_SIZE},
    },
}
