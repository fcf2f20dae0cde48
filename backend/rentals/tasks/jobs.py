from rentals.tasks.celery_app import celery
from rentals.tasks import worker_jobs


@celery.task(name="rentals.tasks.jobs.mark_overdue_bookings")
def mark_overdue_bookings():
    return worker_jobs.mark_overdue_bookings()


@celery.task(name="rentals.tasks.jobs.expire_payment_holds")
def expire_payment_holds():
    return worker_jobs.expire_payment_holds()


@celery.task(name="rentals.tasks.jobs.dispatch_outbox")
def dispatch_outbox(limit: int = 100):
    return worker_jobs.dispatch_outbox(limit=limit)
