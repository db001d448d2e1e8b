"""
Client-side credit tracking.

``CreditTracker`` keeps a cached balance for one user so a UI can skip
requests that are bound to fail. The cache is a hint: every consumption is
still decided by the ledger, and a stale cache only costs a round trip.
"""
import time
from typing import Any, Callable, Dict, Optional, Protocol

import structlog

from apps.core.exceptions import CreditLedgerException
from apps.db.models.credit import CreditBalance

logger = structlog.get_logger(__name__)


class CreditBackend(Protocol):
    """The part of ``CreditManager`` the tracker relies on."""

    def get_balance(self, user_id: str) -> CreditBalance: ...

    def consume_credits(
        self,
        user_id: str,
        amount: int,
        provider: str,
        operation: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> bool: ...

    def get_cost(self, provider: str, operation: str) -> int: ...


class CreditTracker:
    """Cached balance and credit-gated actions for a single user.

    The balance is loaded on construction unless ``refresh_on_init`` is False.
    """

    def __init__(
        self,
        backend: CreditBackend,
        user_id: Optional[str],
        on_credits_consumed: Optional[Callable[[int], None]] = None,
        on_insufficient_credits: Optional[Callable[[], None]] = None,
        max_age_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        refresh_on_init: bool = True,
    ):
        self.backend = backend
        self.user_id = user_id
        self.on_credits_consumed = on_credits_consumed
        self.on_insufficient_credits = on_insufficient_credits
        self.max_age_seconds = max_age_seconds
        self._clock = clock

        self.balance = 0
        self.is_loading = False
        self.last_refreshed_at: Optional[float] = None

        if refresh_on_init:
            self.refresh_balance()

    def has_credits(self, amount: int) -> bool:
        """Advisory check against the cached balance."""
        return self.balance >= amount

    def refresh_balance(self) -> None:
        """Re-read the balance. Failures are logged and keep the cached value."""
        if not self.user_id:
            return

        self.is_loading = True
        try:
            self.balance = self.backend.get_balance(self.user_id).balance
            self.last_refreshed_at = self._clock()
        except CreditLedgerException as e:
            logger.error("Failed to refresh credit balance", user_id=self.user_id, error=e.message)
        finally:
            self.is_loading = False

    def refresh_if_stale(self) -> bool:
        """Refresh when the cache is older than ``max_age_seconds``; returns True if it refreshed."""
        if (
            self.last_refreshed_at is not None
            and self._clock() - self.last_refreshed_at < self.max_age_seconds
        ):
            return False
        self.refresh_balance()
        return True

    def consume_credits(
        self,
        amount: int,
        provider: str,
        operation: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """
        Spend credits through the backend.

        On success the cached balance drops by ``amount`` and
        ``on_credits_consumed`` fires. On insufficient credits
        ``on_insufficient_credits`` fires and the cache is re-read. Errors are
        logged and reported as False.
        """
        if not self.user_id:
            return False

        try:
            consumed = self.backend.consume_credits(
                self.user_id, amount, provider, operation,
                metadata=metadata, idempotency_key=idempotency_key,
            )
        except CreditLedgerException as e:
            logger.error(
                "Failed to consume credits",
                user_id=self.user_id,
                amount=amount,
                provider=provider,
                operation=operation,
                error=e.message,
            )
            return False

        if consumed:
            self.balance = max(0, self.balance - amount)
            if self.on_credits_consumed:
                self.on_credits_consumed(amount)
            return True

        if self.on_insufficient_credits:
            self.on_insufficient_credits()
        self.refresh_balance()
        return False

    def get_cost(self, provider: str, operation: str) -> int:
        """Cost lookup; errors propagate to the caller."""
        return self.backend.get_cost(provider, operation)
