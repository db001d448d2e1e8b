"""
Prometheus metrics for the credit ledger.
Tracks grants, consumption, ledger latency and HTTP traffic.
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, CONTENT_TYPE_LATEST, generate_latest
from fastapi import Response
import time
import structlog

logger = structlog.get_logger(__name__)

# Create custom registry for our metrics
registry = CollectorRegistry()

# Ledger Metrics
credits_granted = Counter(
    'credit_ledger_credits_granted_total',
    'Total credits added to accounts',
    ['transaction_type'],
    registry=registry
)

credits_consumed = Counter(
    'credit_ledger_credits_consumed_total',
    'Total credits consumed by metered operations',
    ['provider', 'operation'],
    registry=registry
)

consumption_rejections = Counter(
    'credit_ledger_consumption_rejections_total',
    'Consumption attempts rejected for insufficient credits',
    ['provider', 'operation'],
    registry=registry
)

idempotent_replays = Counter(
    'credit_ledger_idempotent_replays_total',
    'Mutations answered from a prior result for the same idempotency key',
    ['operation'],
    registry=registry
)

ledger_operation_duration = Histogram(
    'credit_ledger_operation_duration_seconds',
    'Ledger store operation duration in seconds',
    ['operation', 'backend'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, float('inf')],
    registry=registry
)

ledger_errors = Counter(
    'credit_ledger_errors_total',
    'Ledger operation failures',
    ['operation', 'error_type'],
    registry=registry
)

# HTTP Metrics
http_requests_total = Counter(
    'credit_ledger_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=registry
)

http_request_duration = Histogram(
    'credit_ledger_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, float('inf')],
    registry=registry
)

# Health Check Metrics
health_check_duration = Histogram(
    'credit_ledger_health_check_duration_seconds',
    'Health check duration in seconds',
    ['check_type', 'service'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, float('inf')],
    registry=registry
)

health_check_status = Gauge(
    'credit_ledger_health_check_status',
    'Health check status (1=healthy, 0=unhealthy)',
    ['service'],
    registry=registry
)


class MetricsCollector:
    """Centralized metrics collection and helper methods."""

    def __init__(self):
        self.registry = registry

    def get_metrics_response(self) -> Response:
        """Return Prometheus metrics as HTTP response."""
        metrics_data = generate_latest(self.registry)
        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )


# Global metrics collector instance
metrics = MetricsCollector()


def increment_credits_granted(transaction_type: str, amount: int):
    """Count credits added by purchase, bonus or refund."""
    credits_granted.labels(transaction_type=transaction_type).inc(amount)


def increment_credits_consumed(provider: str, operation: str, amount: int):
    """Count credits spent on a metered operation."""
    credits_consumed.labels(provider=provider, operation=operation).inc(amount)


def increment_consumption_rejections(provider: str, operation: str):
    consumption_rejections.labels(provider=provider, operation=operation).inc()
    logger.debug(
        "consumption_rejection_recorded",
        provider=provider,
        operation=operation
    )


def increment_idempotent_replays(operation: str):
    idempotent_replays.labels(operation=operation).inc()


def observe_ledger_operation_duration(operation: str, backend: str, duration_seconds: float):
    """Record ledger store latency."""
    ledger_operation_duration.labels(operation=operation, backend=backend).observe(duration_seconds)


def increment_ledger_errors(operation: str, error_type: str):
    """Increment ledger error counter."""
    ledger_errors.labels(operation=operation, error_type=error_type).inc()
    logger.warning(
        "ledger_error_recorded",
        operation=operation,
        error_type=error_type
    )


def increment_http_requests(method: str, endpoint: str, status_code: str):
    """Increment HTTP request counter."""
    http_requests_total.labels(method=method, endpoint=endpoint, status_code=status_code).inc()


def observe_http_request_duration(method: str, endpoint: str, duration_seconds: float):
    """Record HTTP request duration."""
    http_request_duration.labels(method=method, endpoint=endpoint).observe(duration_seconds)


def observe_health_check_duration(check_type: str, service: str, duration_seconds: float):
    """Record health check duration."""
    health_check_duration.labels(check_type=check_type, service=service).observe(duration_seconds)


def set_health_check_status(service: str, is_healthy: bool):
    """Set health check status."""
    health_check_status.labels(service=service).set(1 if is_healthy else 0)


class LedgerMetricsContext:
    """Context manager recording duration and failures of one ledger call."""

    def __init__(self, operation: str, backend: str):
        self.operation = operation
        self.backend = backend
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            duration = time.time() - self.start_time
            observe_ledger_operation_duration(self.operation, self.backend, duration)
            if exc_type:
                increment_ledger_errors(self.operation, exc_type.__name__)
