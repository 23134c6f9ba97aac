"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Enrollment metrics
enrollment_attempts = Counter(
    'enrollment_attempts_total',
    'Total enrollment attempts',
    ['result']  # created, existing, capacity_exceeded, rejected
)

enrollment_latency = Histogram(
    'enrollment_latency_seconds',
    'Enrollment operation latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

withdrawals = Counter(
    'registration_withdrawals_total',
    'Registrations withdrawn, by who withdrew them',
    ['actor']  # owner, admin
)

status_changes = Counter(
    'registration_status_changes_total',
    'Administrative registration status changes',
    ['status']
)

# HTTP metrics
http_request_latency = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency by route',
    ['method', 'route', 'status'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

# Unit of work metrics
transaction_retries = Counter(
    'transaction_retry_attempts_total',
    'Unit-of-work retries',
    ['reason']  # conflict, transient
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set/invalidate, hit/miss/error
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_enrollment_attempt(result: str):
    """Result: created, existing, capacity_exceeded, rejected"""
    enrollment_attempts.labels(result=result).inc()


def record_withdrawal(by_admin: bool):
    withdrawals.labels(actor="admin" if by_admin else "owner").inc()


def record_status_change(new_status: str):
    status_changes.labels(status=new_status).inc()


def record_transaction_retry(reason: str):
    """Reason: conflict, transient"""
    transaction_retries.labels(reason=reason).inc()


def record_http_request(method: str, route: str, status_code: int, seconds: float):
    http_request_latency.labels(method=method, route=route, status=str(status_code)).observe(seconds)


def record_cache_operation(operation: str, result: str):
    cache_operations.labels(operation=operation, result=result).inc()
