"""
Credit manager: grants, consumption, pricing and reporting over a ledger store.

The manager validates input, picks the transaction type explicitly for each
operation and delegates every balance change to one atomic store call. Reads
are retried on ``StorageUnavailableError``; mutations never are, since a
blind retry after an ambiguous failure could apply twice. Callers that need
to retry a mutation pass an idempotency key instead.
"""
from collections import defaultdict
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from apps.core.config import DEFAULT_CREDIT_PACKAGES, DEFAULT_PRICING_TIERS, TransactionType
from apps.core.exceptions import NotFoundError, PricingNotFoundError, StorageUnavailableError, ValidationError
from apps.core.monitoring import (
    LedgerMetricsContext,
    increment_consumption_rejections,
    increment_credits_consumed,
    increment_credits_granted,
    increment_idempotent_replays,
)
from apps.core.settings import settings
from apps.db.models.credit import (
    CreditBalance,
    CreditTransactionRead,
    ReconciliationReport,
    UsageStats,
    utcnow,
)
from apps.db.models.pricing import (
    CreditPackageCreate,
    CreditPackageRead,
    PricingTierCreate,
    PricingTierRead,
    PricingTierUpdate,
)
from apps.ledger.base import ConsumeOutcome, LedgerEntry, LedgerStore

logger = structlog.get_logger(__name__)


def _require_positive(value: int, field: str = "amount") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer", details={field: value})
    return value


class CreditManager:
    """
    Service for the credit ledger.

    Provides:
    - Balance reads with lazy account creation
    - Typed grants (purchase, bonus, refund) and consumption
    - Pricing lookup and catalog administration
    - Transaction history, usage statistics and reconciliation
    """

    def __init__(
        self,
        store: LedgerStore,
        read_retry_attempts: Optional[int] = None,
        read_retry_backoff_seconds: Optional[float] = None,
    ):
        """
        Args:
            store: Ledger storage backend
            read_retry_attempts: Attempts for reads hitting an unavailable store
            read_retry_backoff_seconds: Base of the exponential backoff between attempts
        """
        self.store = store
        self.read_retry_attempts = (
            settings.ledger_read_retry_attempts
            if read_retry_attempts is None
            else read_retry_attempts
        )
        self.read_retry_backoff_seconds = (
            settings.ledger_read_retry_backoff_seconds
            if read_retry_backoff_seconds is None
            else read_retry_backoff_seconds
        )

    def _read(self, operation: str, fn: Callable, *args, **kwargs):
        retryer = Retrying(
            retry=retry_if_exception_type(StorageUnavailableError),
            stop=stop_after_attempt(self.read_retry_attempts),
            wait=wait_exponential(multiplier=self.read_retry_backoff_seconds, max=5),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                "Retrying ledger read",
                operation=operation,
                attempt=retry_state.attempt_number,
            ),
        )
        with LedgerMetricsContext(operation, self.store.name):
            return retryer(fn, *args, **kwargs)

    def _write(self, operation: str, fn: Callable, *args, **kwargs):
        with LedgerMetricsContext(operation, self.store.name):
            return fn(*args, **kwargs)

    # Balances and grants
    def get_balance(self, user_id: str) -> CreditBalance:
        """Current balance; a zero account is created on first read."""
        return self._read("get_balance", self.store.get_or_create_account, user_id)

    def _grant(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: Optional[str],
        metadata: Optional[Dict[str, Any]],
        reference_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        _require_positive(amount)
        entry = self._write(
            transaction_type.value,
            self.store.apply_credit,
            user_id,
            amount,
            transaction_type,
            description=description,
            meta=metadata,
            reference_id=reference_id,
            idempotency_key=idempotency_key,
        )

        if entry.replayed:
            increment_idempotent_replays(transaction_type.value)
            logger.info(
                "Credit grant replayed",
                user_id=user_id,
                transaction_id=str(entry.transaction.id),
                idempotency_key=idempotency_key,
            )
        else:
            increment_credits_granted(transaction_type.value, amount)
            logger.info(
                "Credits added",
                user_id=user_id,
                amount=amount,
                transaction_type=transaction_type.value,
                balance=entry.account.balance,
                transaction_id=str(entry.transaction.id),
            )
        return entry

    def add_credits(
        self,
        user_id: str,
        amount: int,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        """Record a purchase. Consumption never goes through this path."""
        return self._grant(
            user_id, amount, TransactionType.PURCHASE, description, metadata,
            idempotency_key=idempotency_key,
        )

    def give_bonus_credits(
        self,
        user_id: str,
        amount: int,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        return self._grant(
            user_id, amount, TransactionType.BONUS, f"Bonus: {reason}", metadata,
            idempotency_key=idempotency_key,
        )

    def refund_credits(
        self,
        user_id: str,
        amount: int,
        reason: str,
        reference_transaction_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Return credits to a user.

        With ``reference_transaction_id`` the refund is bounded by what that
        usage transaction consumed, across all refunds against it.
        """
        return self._grant(
            user_id, amount, TransactionType.REFUND, f"Refund: {reason}", metadata,
            reference_id=reference_transaction_id,
            idempotency_key=idempotency_key,
        )

    # Consumption
    def consume(
        self,
        user_id: str,
        amount: int,
        provider: str,
        operation: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> ConsumeOutcome:
        """
        Spend ``amount`` credits on a metered operation.

        Returns an outcome with ``consumed=False`` when the balance is short;
        that is a normal result, not an error.
        """
        _require_positive(amount)
        if not provider or not operation:
            raise ValidationError("provider and operation are required")

        outcome = self._write(
            "consume",
            self.store.consume,
            user_id,
            amount,
            provider,
            operation,
            description=f"{provider} {operation}",
            meta=metadata,
            request_metadata=metadata,
            idempotency_key=idempotency_key,
        )

        if not outcome.consumed:
            increment_consumption_rejections(provider, operation)
            logger.warning(
                "Insufficient credits",
                user_id=user_id,
                amount=amount,
                balance=outcome.balance,
                provider=provider,
                operation=operation,
            )
        elif outcome.replayed:
            increment_idempotent_replays("consume")
            logger.info(
                "Consumption replayed",
                user_id=user_id,
                transaction_id=str(outcome.transaction.id),
                idempotency_key=idempotency_key,
            )
        else:
            increment_credits_consumed(provider, operation, amount)
            logger.info(
                "Credits consumed",
                user_id=user_id,
                amount=amount,
                balance=outcome.balance,
                provider=provider,
                operation=operation,
                transaction_id=str(outcome.transaction.id),
            )
        return outcome

    def consume_credits(
        self,
        user_id: str,
        amount: int,
        provider: str,
        operation: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """True when consumed, False on insufficient credits."""
        return self.consume(
            user_id, amount, provider, operation,
            metadata=metadata, idempotency_key=idempotency_key,
        ).consumed

    def charge_operation(
        self,
        user_id: str,
        provider: str,
        operation: str,
        units: int = 1,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> ConsumeOutcome:
        """Price an operation from the active tier and consume its cost."""
        _require_positive(units, "units")
        cost = self.get_cost(provider, operation) * units
        if cost == 0:
            # Free tiers write nothing to the ledger
            return ConsumeOutcome(consumed=True, balance=self.get_balance(user_id).balance)
        return self.consume(
            user_id, cost, provider, operation,
            metadata=metadata, idempotency_key=idempotency_key,
        )

    # Pricing
    def get_cost(self, provider: str, operation: str) -> int:
        """
        Credits per unit for an operation.

        Raises:
            PricingNotFoundError: No active pricing tier matches
        """
        tier = self._read("get_cost", self.store.find_active_pricing_tier, provider, operation)
        if tier is None:
            logger.warning("No active pricing tier", provider=provider, operation=operation)
            raise PricingNotFoundError(provider, operation)
        return tier.credits_per_unit

    # Reporting
    def get_transaction_history(self, user_id: str, limit: Optional[int] = None) -> List[CreditTransactionRead]:
        """Most recent transactions, newest first."""
        limit = settings.default_history_limit if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= settings.max_history_limit:
            raise ValidationError(
                f"limit must be between 1 and {settings.max_history_limit}",
                details={"limit": limit},
            )
        return self._read("list_transactions", self.store.list_transactions, user_id, limit)

    def get_usage_stats(self, user_id: str, days: Optional[int] = None) -> UsageStats:
        """Credits used over the trailing ``days``, grouped by provider and operation."""
        days = settings.default_usage_window_days if days is None else days
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= settings.max_usage_window_days:
            raise ValidationError(
                f"days must be between 1 and {settings.max_usage_window_days}",
                details={"days": days},
            )

        since = utcnow() - timedelta(days=days)
        logs = self._read("list_usage_logs", self.store.list_usage_logs, user_id, since)

        by_provider: Dict[str, int] = defaultdict(int)
        by_operation: Dict[str, int] = defaultdict(int)
        for log in logs:
            by_provider[log.provider] += log.credits_used
            by_operation[log.operation] += log.credits_used

        return UsageStats(
            user_id=user_id,
            days=days,
            since=since,
            total_credits_used=sum(log.credits_used for log in logs),
            entries=len(logs),
            by_provider=dict(by_provider),
            by_operation=dict(by_operation),
        )

    def reconcile(self, user_id: str) -> ReconciliationReport:
        """Compare the stored balance with the transaction log and the counters."""
        account = self.get_balance(user_id)
        count, ledger_balance = self._read("summarize_transactions", self.store.summarize_transactions, user_id)
        counters_balance = (
            account.total_purchased + account.total_bonus + account.total_refunded - account.total_used
        )
        consistent = account.balance == ledger_balance == counters_balance

        if not consistent:
            logger.error(
                "Ledger inconsistency detected",
                user_id=user_id,
                stored_balance=account.balance,
                ledger_balance=ledger_balance,
                counters_balance=counters_balance,
            )

        return ReconciliationReport(
            user_id=user_id,
            stored_balance=account.balance,
            ledger_balance=ledger_balance,
            counters_balance=counters_balance,
            transaction_count=count,
            consistent=consistent,
        )

    # Catalog
    def get_pricing_tiers(self, active_only: bool = True) -> List[PricingTierRead]:
        return self._read("list_pricing_tiers", self.store.list_pricing_tiers, active_only)

    def get_credit_packages(self, active_only: bool = True) -> List[CreditPackageRead]:
        return self._read("list_credit_packages", self.store.list_credit_packages, active_only)

    def get_credit_package(self, package_id: str) -> CreditPackageRead:
        package = self._read("get_credit_package", self.store.get_credit_package, package_id)
        if package is None:
            raise NotFoundError("Credit package", package_id)
        return package

    def create_pricing_tier(self, tier: PricingTierCreate) -> PricingTierRead:
        created = self._write("create_pricing_tier", self.store.create_pricing_tier, tier)
        logger.info(
            "Pricing tier created",
            tier_id=str(created.id),
            provider=created.provider,
            operation=created.operation,
            credits_per_unit=created.credits_per_unit,
        )
        return created

    def update_pricing_tier(self, tier_id: str, changes: PricingTierUpdate) -> PricingTierRead:
        updated = self._write("update_pricing_tier", self.store.update_pricing_tier, tier_id, changes)
        if updated is None:
            raise NotFoundError("Pricing tier", tier_id)
        logger.info("Pricing tier updated", tier_id=tier_id, changes=changes.model_dump(exclude_unset=True))
        return updated

    def create_credit_package(self, package: CreditPackageCreate) -> CreditPackageRead:
        created = self._write("create_credit_package", self.store.create_credit_package, package)
        logger.info("Credit package created", package_id=str(created.id), name=created.name)
        return created

    def seed_default_catalog(self) -> Dict[str, int]:
        """Insert the default pricing tiers and packages that are missing."""
        existing_tiers = {(t.provider, t.operation) for t in self.get_pricing_tiers(active_only=False)}
        existing_packages = {p.name for p in self.get_credit_packages(active_only=False)}

        created = {"pricing_tiers": 0, "credit_packages": 0}
        for tier in DEFAULT_PRICING_TIERS:
            if (tier["provider"], tier["operation"]) not in existing_tiers:
                self.create_pricing_tier(PricingTierCreate(**tier))
                created["pricing_tiers"] += 1
        for package in DEFAULT_CREDIT_PACKAGES:
            if package["name"] not in existing_packages:
                self.create_credit_package(CreditPackageCreate(**package))
                created["credit_packages"] += 1

        logger.info("Default catalog seeded", **created)
        return created
