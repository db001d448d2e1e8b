"""
Storage contract for the credit ledger.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from apps.core.config import TransactionType
from apps.core.exceptions import ValidationError
from apps.db.models.credit import CreditBalance, CreditTransactionRead, UsageLogRead
from apps.db.models.pricing import (
    CreditPackageCreate,
    CreditPackageRead,
    PricingTierCreate,
    PricingTierRead,
    PricingTierUpdate,
)


@dataclass
class LedgerEntry:
    """Result of a credit-increasing mutation."""
    account: CreditBalance
    transaction: CreditTransactionRead
    replayed: bool = False


@dataclass
class ConsumeOutcome:
    """Result of a consumption attempt.

    ``consumed`` is False when the balance could not cover the amount; in
    that case nothing was written and ``transaction``/``usage_log`` are None.
    """
    consumed: bool
    balance: int
    transaction: Optional[CreditTransactionRead] = None
    usage_log: Optional[UsageLogRead] = None
    replayed: bool = False


class LedgerStore(ABC):
    """Abstract base class for ledger storage backends.

    Every mutating method is one atomic unit: the balance row, the
    transaction row and (for consumption) the usage log row are written
    together or not at all, and mutations for one user are serialized.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name identifier."""
        pass

    @abstractmethod
    def get_or_create_account(self, user_id: str) -> CreditBalance:
        """
        Read the account, creating a zero balance row if absent.

        Concurrent first reads must not create two rows.
        """
        pass

    @abstractmethod
    def apply_credit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        reference_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Add a positive amount and append the matching transaction.

        Args:
            user_id: Account owner
            amount: Credits to add, > 0
            transaction_type: purchase, bonus or refund
            description: Human-readable description
            meta: Opaque metadata stored on the transaction
            reference_id: For refunds, the usage transaction being reversed
            idempotency_key: Replays the original result when repeated

        Raises:
            ValidationError: Bad refund reference or idempotency key misuse
            StorageUnavailableError: Store unreachable
            UnexpectedLedgerError: Any other storage failure
        """
        pass

    @abstractmethod
    def consume(
        self,
        user_id: str,
        amount: int,
        provider: str,
        operation: str,
        description: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        request_metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> ConsumeOutcome:
        """
        Decrement the balance if it covers ``amount``.

        The check and the decrement are a single storage operation. On
        success a usage transaction and a usage log are written with it.
        """
        pass

    @abstractmethod
    def list_transactions(self, user_id: str, limit: int) -> List[CreditTransactionRead]:
        """Most recent transactions, newest first."""
        pass

    @abstractmethod
    def list_usage_logs(self, user_id: str, since: datetime) -> List[UsageLogRead]:
        """Usage log entries created at or after ``since``."""
        pass

    @abstractmethod
    def summarize_transactions(self, user_id: str) -> Tuple[int, int]:
        """Return ``(transaction_count, sum_of_amounts)`` for the user."""
        pass

    @abstractmethod
    def find_active_pricing_tier(self, provider: str, operation: str) -> Optional[PricingTierRead]:
        pass

    @abstractmethod
    def list_pricing_tiers(self, active_only: bool = True) -> List[PricingTierRead]:
        pass

    @abstractmethod
    def create_pricing_tier(self, tier: PricingTierCreate) -> PricingTierRead:
        pass

    @abstractmethod
    def update_pricing_tier(self, tier_id: str, changes: PricingTierUpdate) -> Optional[PricingTierRead]:
        pass

    @abstractmethod
    def list_credit_packages(self, active_only: bool = True) -> List[CreditPackageRead]:
        pass

    @abstractmethod
    def get_credit_package(self, package_id: str) -> Optional[CreditPackageRead]:
        pass

    @abstractmethod
    def create_credit_package(self, package: CreditPackageCreate) -> CreditPackageRead:
        pass

    def health_check(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            True if healthy, False otherwise
        """
        return True


def check_replay(
    prior: CreditTransactionRead,
    transaction_type: TransactionType,
    amount: int,
) -> None:
    """Reject an idempotency key reused for a different mutation."""
    if prior.transaction_type != transaction_type or prior.amount != amount:
        raise ValidationError(
            "Idempotency key already used for a different operation",
            details={
                "idempotency_key": prior.idempotency_key,
                "transaction_id": str(prior.id),
            },
        )
