"""
Sentry integration for the credit ledger API.
"""

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
import structlog

from apps.core.settings import settings

logger = structlog.get_logger(__name__)

_SKIPPED_TRANSACTIONS = ["/healthz", "/readyz", "/metrics"]


def init_sentry():
    """Initialize Sentry when a DSN is configured."""
    if not settings.sentry_dsn:
        logger.info("Sentry DSN not configured, skipping Sentry initialization")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=settings.app_version,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        attach_stacktrace=True,
        send_default_pii=False,
        max_breadcrumbs=50,
        integrations=[
            FastApiIntegration(
                failed_request_status_codes={*range(500, 600)},
            ),
            SqlalchemyIntegration(),
            LoggingIntegration(level=None, event_level=None),
        ],
        before_send=_before_send_filter,
        before_send_transaction=_before_send_transaction_filter,
    )

    sentry_sdk.set_tag("service", "credit-ledger")

    logger.info(
        "sentry_initialized",
        environment=settings.environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )


def _before_send_filter(event, hint):
    """Filter and enrich events before sending to Sentry."""
    headers = event.get("request", {}).get("headers", {})
    for header in ("authorization", "idempotency-key"):
        if header in headers:
            headers[header] = "[Filtered]"

    if event.get("transaction") in _SKIPPED_TRANSACTIONS:
        return None

    return event


def _before_send_transaction_filter(event, hint):
    """Skip health check and scrape transactions."""
    if event.get("transaction") in _SKIPPED_TRANSACTIONS:
        return None
    return event


def capture_ledger_context(user_id: str, operation: str, provider: str = None):
    """Tag the current Sentry scope with the ledger call being made."""
    scope = sentry_sdk.get_current_scope()
    scope.set_user({"id": user_id})
    scope.set_tag("ledger_operation", operation)
    if provider:
        scope.set_tag("provider", provider)
