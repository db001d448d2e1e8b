"""
Health checks for the ledger store with timings.
"""

import time
from typing import Dict, Any, Optional
import structlog

from apps.core.settings import settings
from .prometheus_metrics import observe_health_check_duration, set_health_check_status

logger = structlog.get_logger(__name__)


class HealthCheckResult:
    """Result of a health check with timing and status information."""

    def __init__(self, service: str, healthy: bool, duration_ms: float,
                 details: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        self.service = service
        self.healthy = healthy
        self.duration_ms = duration_ms
        self.details = details or {}
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "healthy": self.healthy,
            "duration_ms": round(self.duration_ms, 2),
            "details": self.details,
            "error": self.error,
        }


def check_ledger_store(store) -> HealthCheckResult:
    """Probe the ledger store and record the outcome."""
    start_time = time.time()
    healthy = store.health_check()
    duration_ms = (time.time() - start_time) * 1000

    observe_health_check_duration("readiness", "ledger", duration_ms / 1000)
    set_health_check_status("ledger", healthy)

    if not healthy:
        logger.warning("Ledger store health check failed", backend=store.name)

    return HealthCheckResult(
        service="ledger",
        healthy=healthy,
        duration_ms=duration_ms,
        details={"backend": store.name},
        error=None if healthy else "ledger store unreachable",
    )


def basic_health_check() -> Dict[str, Any]:
    """Basic health check for /healthz endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "service": "credit-ledger",
        "version": settings.app_version,
    }


def readiness_check(store) -> Dict[str, Any]:
    """Readiness check for /readyz endpoint."""
    result = check_ledger_store(store)
    return {
        "healthy": result.healthy,
        "timestamp": time.time(),
        "services": {result.service: result.to_dict()},
    }
