"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking creation attempts',
    ['status']  # pending_payment, confirmed, conflict, rejected, gateway_error
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking creation latency (lock wait included)',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

# Payment metrics
payment_verifications = Counter(
    'payment_verifications_total',
    'Payment verification outcomes',
    ['result']  # confirmed, duplicate, signature_mismatch, rejected
)

gateway_requests = Counter(
    'gateway_requests_total',
    'Payment gateway calls',
    ['operation', 'result']  # create_order/fetch_order, ok/retry/error
)

# Promotion metrics
promotion_ledger_operations = Counter(
    'promotion_ledger_operations_total',
    'Promotion usage counter updates',
    ['operation', 'result']  # increment/decrement, applied/skipped/cap_reached
)

# Side effects
outbox_dispatch = Counter(
    'outbox_dispatch_total',
    'Outbox event delivery attempts',
    ['result']  # delivered, retry, failed
)

sweep_transitions = Counter(
    'sweep_transitions_total',
    'Bookings moved by background sweeps',
    ['kind']  # overdue, hold_expired
)

asset_lock_wait = Histogram(
    'asset_lock_wait_seconds',
    'Time spent waiting for the per-asset booking lock',
    buckets=[0.0001, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(status: str):
    """Record booking attempt outcome."""
    booking_attempts.labels(status=status).inc()


def record_payment_verification(result: str):
    payment_verifications.labels(result=result).inc()


def record_gateway_request(operation: str, result: str):
    gateway_requests.labels(operation=operation, result=result).inc()


def record_ledger_operation(operation: str, result: str):
    promotion_ledger_operations.labels(operation=operation, result=result).inc()


def record_outbox_dispatch(result: str):
    outbox_dispatch.labels(result=result).inc()


def record_sweep_transition(kind: str, count: int = 1):
    if count:
        sweep_transitions.labels(kind=kind).inc(count)
