"""
Supabase ledger store.

Mutations are Postgres functions (see ``supabase/migrations``) called through
PostgREST RPC so that the row lock, the balance update and the log inserts
happen inside one database transaction. Reads go through the table API.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import Client

from apps.core.config import TransactionType
from apps.core.exceptions import StorageUnavailableError, UnexpectedLedgerError, ValidationError
from apps.db.models.credit import CreditBalance, CreditTransactionRead, UsageLogRead, utcnow
from apps.db.models.pricing import (
    CreditPackageCreate,
    CreditPackageRead,
    PricingTierCreate,
    PricingTierRead,
    PricingTierUpdate,
)
from apps.ledger.base import ConsumeOutcome, LedgerEntry, LedgerStore

logger = structlog.get_logger(__name__)

# invalid_parameter_value, check_violation, unique_violation
VALIDATION_ERROR_CODES = {"22023", "23514", "23505"}


def _single(data: Any) -> Optional[Dict[str, Any]]:
    """PostgREST returns composite results either as an object or a one-element list."""
    if isinstance(data, list):
        return data[0] if data else None
    return data


def _transaction_from_row(row: Optional[Dict[str, Any]]) -> Optional[CreditTransactionRead]:
    if not row:
        return None
    row = dict(row)
    row["meta"] = row.pop("metadata", None) or {}
    return CreditTransactionRead.model_validate(row)


def _usage_log_from_row(row: Optional[Dict[str, Any]]) -> Optional[UsageLogRead]:
    return UsageLogRead.model_validate(row) if row else None


def _is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
        return True
    except ValueError:
        return False


class SupabaseLedgerStore(LedgerStore):
    """Ledger store backed by Supabase Postgres."""

    def __init__(self, client: Client):
        self.client = client

    @property
    def name(self) -> str:
        return "supabase"

    def _execute(self, operation: str, request):
        """Run a PostgREST request, mapping transport and API failures."""
        try:
            return request.execute()
        except httpx.TransportError as e:
            logger.error("Ledger storage unavailable", operation=operation, error=str(e))
            raise StorageUnavailableError(operation) from e
        except APIError as e:
            if e.code in VALIDATION_ERROR_CODES:
                raise ValidationError(e.message or "Invalid ledger request", details={"code": e.code}) from e
            logger.error("Ledger storage error", operation=operation, code=e.code, error=e.message)
            raise UnexpectedLedgerError(operation) from e

    def get_or_create_account(self, user_id: str) -> CreditBalance:
        response = self._execute(
            "get_balance",
            self.client.rpc("ledger_get_or_create_account", {"p_user_id": user_id}),
        )
        row = _single(response.data)
        if row is None:
            raise UnexpectedLedgerError("get_balance", "Account upsert returned no row")
        return CreditBalance.model_validate(row)

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
        if reference_id is not None and _is_uuid(reference_id):
            reference_id = str(UUID(str(reference_id)))
        response = self._execute(
            "apply_credit",
            self.client.rpc("ledger_apply_credit", {
                "p_user_id": user_id,
                "p_amount": amount,
                "p_transaction_type": transaction_type.value,
                "p_description": description,
                "p_metadata": meta or {},
                "p_reference_id": reference_id,
                "p_idempotency_key": idempotency_key,
            }),
        )
        result = _single(response.data) or {}
        return LedgerEntry(
            account=CreditBalance.model_validate(result["account"]),
            transaction=_transaction_from_row(result["transaction"]),
            replayed=bool(result.get("replayed", False)),
        )

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
        response = self._execute(
            "consume",
            self.client.rpc("ledger_consume_credits", {
                "p_user_id": user_id,
                "p_amount": amount,
                "p_provider": provider,
                "p_operation": operation,
                "p_description": description,
                "p_metadata": meta or {},
                "p_request_metadata": request_metadata or {},
                "p_idempotency_key": idempotency_key,
            }),
        )
        result = _single(response.data) or {}
        return ConsumeOutcome(
            consumed=bool(result.get("consumed", False)),
            balance=int(result.get("balance", 0)),
            transaction=_transaction_from_row(result.get("transaction")),
            usage_log=_usage_log_from_row(result.get("usage_log")),
            replayed=bool(result.get("replayed", False)),
        )

    def list_transactions(self, user_id: str, limit: int) -> List[CreditTransactionRead]:
        response = self._execute(
            "list_transactions",
            self.client.table("credit_transactions")
            .select("*")
            .eq("user_id", user_id)
            .order("sequence", desc=True)
            .limit(limit),
        )
        return [_transaction_from_row(row) for row in response.data or []]

    def list_usage_logs(self, user_id: str, since: datetime) -> List[UsageLogRead]:
        response = self._execute(
            "list_usage_logs",
            self.client.table("usage_logs")
            .select("*")
            .eq("user_id", user_id)
            .gte("created_at", since.isoformat())
            .order("created_at", desc=True),
        )
        return [_usage_log_from_row(row) for row in response.data or []]

    def summarize_transactions(self, user_id: str) -> Tuple[int, int]:
        response = self._execute(
            "summarize_transactions",
            self.client.rpc("ledger_summarize_transactions", {"p_user_id": user_id}),
        )
        row = _single(response.data) or {}
        return int(row.get("transaction_count", 0)), int(row.get("amount_sum", 0))

    def find_active_pricing_tier(self, provider: str, operation: str) -> Optional[PricingTierRead]:
        response = self._execute(
            "find_pricing_tier",
            self.client.table("pricing_tiers")
            .select("*")
            .eq("provider", provider)
            .eq("operation", operation)
            .eq("is_active", True)
            .order("updated_at", desc=True)
            .limit(1),
        )
        row = _single(response.data)
        return PricingTierRead.model_validate(row) if row else None

    def list_pricing_tiers(self, active_only: bool = True) -> List[PricingTierRead]:
        request = self.client.table("pricing_tiers").select("*")
        if active_only:
            request = request.eq("is_active", True)
        response = self._execute("list_pricing_tiers", request.order("provider").order("operation"))
        return [PricingTierRead.model_validate(row) for row in response.data or []]

    def create_pricing_tier(self, tier: PricingTierCreate) -> PricingTierRead:
        response = self._execute(
            "create_pricing_tier",
            self.client.table("pricing_tiers").insert(tier.model_dump(mode="json")),
        )
        return PricingTierRead.model_validate(_single(response.data))

    def update_pricing_tier(self, tier_id: str, changes: PricingTierUpdate) -> Optional[PricingTierRead]:
        if not _is_uuid(tier_id):
            return None
        payload = changes.model_dump(mode="json", exclude_unset=True)
        payload["updated_at"] = utcnow().isoformat()
        response = self._execute(
            "update_pricing_tier",
            self.client.table("pricing_tiers").update(payload).eq("id", tier_id),
        )
        row = _single(response.data)
        return PricingTierRead.model_validate(row) if row else None

    def list_credit_packages(self, active_only: bool = True) -> List[CreditPackageRead]:
        request = self.client.table("credit_packages").select("*")
        if active_only:
            request = request.eq("is_active", True)
        response = self._execute("list_credit_packages", request.order("credits_amount"))
        return [CreditPackageRead.model_validate(row) for row in response.data or []]

    def get_credit_package(self, package_id: str) -> Optional[CreditPackageRead]:
        if not _is_uuid(package_id):
            return None
        response = self._execute(
            "get_credit_package",
            self.client.table("credit_packages").select("*").eq("id", package_id).limit(1),
        )
        row = _single(response.data)
        return CreditPackageRead.model_validate(row) if row else None

    def create_credit_package(self, package: CreditPackageCreate) -> CreditPackageRead:
        response = self._execute(
            "create_credit_package",
            self.client.table("credit_packages").insert(package.model_dump(mode="json")),
        )
        return CreditPackageRead.model_validate(_single(response.data))

    def health_check(self) -> bool:
        try:
            self.client.table("pricing_tiers").select("id").limit(1).execute()
            return True
        except (httpx.HTTPError, APIError) as e:
            logger.error("Supabase ledger health check failed", error=str(e))
            return False
