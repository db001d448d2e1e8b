"""
Monitoring and observability package for the credit ledger.
"""

from .sentry_config import init_sentry, capture_ledger_context
from .prometheus_metrics import (
    metrics,
    LedgerMetricsContext,
    increment_credits_granted,
    increment_credits_consumed,
    increment_consumption_rejections,
    increment_idempotent_replays,
    increment_http_requests,
    observe_http_request_duration,
)
from .health_checks import basic_health_check, readiness_check

__all__ = [
    "init_sentry",
    "capture_ledger_context",
    "metrics",
    "LedgerMetricsContext",
    "increment_credits_granted",
    "increment_credits_consumed",
    "increment_consumption_rejections",
    "increment_idempotent_replays",
    "increment_http_requests",
    "observe_http_request_duration",
    "basic_health_check",
    "readiness_check",
]
