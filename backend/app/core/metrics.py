"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'villa_booking_attempts_total',
    'Total booking submissions',
    ['outcome']  # accepted, or the rejection reason
)

booking_latency = Histogram(
    'villa_booking_latency_seconds',
    'Booking submission latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

booking_transitions = Counter(
    'villa_booking_transitions_total',
    'Booking status transitions',
    ['to_status']
)

# Reservation lock metrics
reservation_lock_wait = Histogram(
    'villa_reservation_lock_wait_seconds',
    'Time spent waiting for the per-villa reservation lock',
    buckets=[0.0001, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

reservation_lock_fallbacks = Counter(
    'villa_reservation_lock_fallbacks_total',
    'Redis lock failures that fell back to the in-process lock'
)

# Calendar cache metrics
cache_operations = Counter(
    'villa_calendar_cache_operations_total',
    'Calendar cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

redis_circuit_breaker_open = Gauge(
    'redis_circuit_breaker_open',
    'Redis circuit breaker state (1=open, 0=closed)'
)

# Notification metrics
notifications_published = Counter(
    'villa_booking_notifications_total',
    'Booking notifications handed to the sink',
    ['event', 'result']  # result: sent, failed
)

# HTTP metrics
http_request_latency = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency',
    ['method', 'status_code'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(outcome: str):
    """Record booking attempt. Outcome: accepted or a rejection reason value."""
    booking_attempts.labels(outcome=outcome).inc()


def record_transition(to_status: str):
    booking_transitions.labels(to_status=to_status).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()


def record_notification(event: str, sent: bool):
    notifications_published.labels(event=event, result="sent" if sent else "failed").inc()
