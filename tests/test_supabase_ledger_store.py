"""
Tests for the Supabase ledger store with a mocked client.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock
from uuid import uuid4

import httpx
import pytest
from postgrest.exceptions import APIError

from apps.core.config import TransactionType
from apps.core.exceptions import StorageUnavailableError, UnexpectedLedgerError, ValidationError
from apps.db.models.pricing import PricingTierCreate, PricingTierUpdate
from apps.ledger.supabase_store import SupabaseLedgerStore

NOW = "2025-01-01T00:00:00+00:00"


def _query(data):
    """Chainable PostgREST request mock."""
    query = MagicMock()
    for method in ("select", "eq", "gte", "order", "limit", "insert", "update"):
        getattr(query, method).return_value = query
    query.execute.return_value = Mock(data=data)
    return query


def _account_row(balance=0, **overrides):
    row = {
        "user_id": "u1",
        "balance": balance,
        "total_purchased": balance,
        "total_bonus": 0,
        "total_refunded": 0,
        "total_used": 0,
        "version": 1 if balance else 0,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def _transaction_row(amount, transaction_type="purchase", balance_after=None, **overrides):
    row = {
        "id": str(uuid4()),
        "user_id": "u1",
        "amount": amount,
        "transaction_type": transaction_type,
        "balance_after": amount if balance_after is None else balance_after,
        "sequence": 1,
        "reference_id": None,
        "idempotency_key": None,
        "description": "test",
        "metadata": {"source": "test"},
        "created_at": NOW,
    }
    row.update(overrides)
    return row


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def supabase_store(client):
    return SupabaseLedgerStore(client)


class TestMutations:
    """Mutations go through the ledger RPC functions."""

    def test_get_or_create_account(self, supabase_store, client):
        client.rpc.return_value = _query(_account_row())

        account = supabase_store.get_or_create_account("u1")

        assert account.balance == 0
        client.rpc.assert_called_once_with("ledger_get_or_create_account", {"p_user_id": "u1"})

    def test_apply_credit_maps_rpc_result(self, supabase_store, client):
        client.rpc.return_value = _query({
            "account": _account_row(100),
            "transaction": _transaction_row(100),
            "replayed": False,
        })

        entry = supabase_store.apply_credit("u1", 100, TransactionType.PURCHASE, description="test")

        assert entry.account.balance == 100
        assert entry.transaction.transaction_type == TransactionType.PURCHASE
        assert entry.transaction.meta == {"source": "test"}
        name, params = client.rpc.call_args[0]
        assert name == "ledger_apply_credit"
        assert params["p_transaction_type"] == "purchase"
        assert params["p_amount"] == 100

    def test_refund_reference_sent_in_canonical_form(self, supabase_store, client):
        usage_id = uuid4()
        client.rpc.return_value = _query({
            "account": _account_row(20),
            "transaction": _transaction_row(20, "refund", reference_id=str(usage_id)),
            "replayed": False,
        })

        supabase_store.apply_credit(
            "u1", 20, TransactionType.REFUND, description="Refund: failed",
            reference_id=str(usage_id).upper(),
        )

        _, params = client.rpc.call_args[0]
        assert params["p_reference_id"] == str(usage_id)

    def test_consume_success(self, supabase_store, client):
        transaction = _transaction_row(-20, "usage", balance_after=30)
        client.rpc.return_value = _query({
            "consumed": True,
            "balance": 30,
            "transaction": transaction,
            "usage_log": {
                "id": str(uuid4()),
                "user_id": "u1",
                "transaction_id": transaction["id"],
                "provider": "openai",
                "operation": "image-gen",
                "credits_used": 20,
                "request_metadata": {},
                "response_metadata": {},
                "created_at": NOW,
            },
            "replayed": False,
        })

        outcome = supabase_store.consume("u1", 20, "openai", "image-gen")

        assert outcome.consumed is True
        assert outcome.balance == 30
        assert outcome.usage_log.credits_used == 20
        assert str(outcome.usage_log.transaction_id) == transaction["id"]

    def test_consume_insufficient(self, supabase_store, client):
        client.rpc.return_value = _query({"consumed": False, "balance": 10, "replayed": False})

        outcome = supabase_store.consume("u1", 20, "openai", "image-gen")

        assert outcome.consumed is False
        assert outcome.balance == 10
        assert outcome.transaction is None
        assert outcome.usage_log is None


class TestErrorMapping:
    """PostgREST and transport failures become ledger errors."""

    def test_transport_error_is_storage_unavailable(self, supabase_store, client):
        query = _query(None)
        query.execute.side_effect = httpx.ConnectError("connection refused")
        client.rpc.return_value = query

        with pytest.raises(StorageUnavailableError):
            supabase_store.get_or_create_account("u1")

    def test_function_validation_error(self, supabase_store, client):
        query = _query(None)
        query.execute.side_effect = APIError({"message": "Refund exceeds the credits consumed", "code": "22023"})
        client.rpc.return_value = query

        with pytest.raises(ValidationError) as exc_info:
            supabase_store.apply_credit("u1", 5, TransactionType.REFUND, reference_id=str(uuid4()))

        assert exc_info.value.message == "Refund exceeds the credits consumed"

    def test_other_api_error_is_unexpected(self, supabase_store, client):
        query = _query(None)
        query.execute.side_effect = APIError({"message": "permission denied", "code": "42501"})
        client.table.return_value = query

        with pytest.raises(UnexpectedLedgerError):
            supabase_store.list_transactions("u1", 10)

    def test_health_check_reports_failure(self, supabase_store, client):
        query = _query(None)
        query.execute.side_effect = httpx.ReadTimeout("timed out")
        client.table.return_value = query

        assert supabase_store.health_check() is False


class TestReads:
    """Table reads and catalog calls."""

    def test_list_transactions_orders_by_sequence(self, supabase_store, client):
        query = _query([_transaction_row(10), _transaction_row(5, sequence=0)])
        client.table.return_value = query

        history = supabase_store.list_transactions("u1", 2)

        assert len(history) == 2
        client.table.assert_called_with("credit_transactions")
        query.order.assert_called_with("sequence", desc=True)
        query.limit.assert_called_with(2)

    def test_list_usage_logs_filters_by_window(self, supabase_store, client):
        query = _query([])
        client.table.return_value = query
        since = datetime(2025, 1, 1, tzinfo=timezone.utc)

        assert supabase_store.list_usage_logs("u1", since) == []
        query.gte.assert_called_with("created_at", since.isoformat())

    def test_summarize_transactions(self, supabase_store, client):
        client.rpc.return_value = _query({"transaction_count": 3, "amount_sum": 42})

        assert supabase_store.summarize_transactions("u1") == (3, 42)

    def test_find_active_pricing_tier_missing(self, supabase_store, client):
        client.table.return_value = _query([])

        assert supabase_store.find_active_pricing_tier("openai", "unknown") is None

    def test_create_pricing_tier(self, supabase_store, client):
        query = _query([{
            "id": str(uuid4()),
            "provider": "openai",
            "operation": "dalle3",
            "credits_per_unit": 10,
            "unit_name": "image",
            "is_active": True,
            "created_at": NOW,
            "updated_at": NOW,
        }])
        client.table.return_value = query

        tier = supabase_store.create_pricing_tier(
            PricingTierCreate(provider="openai", operation="dalle3", credits_per_unit=10, unit_name="image")
        )

        assert tier.credits_per_unit == 10
        inserted = query.insert.call_args[0][0]
        assert inserted["provider"] == "openai"

    def test_update_pricing_tier_rejects_malformed_id(self, supabase_store, client):
        assert supabase_store.update_pricing_tier("nope", PricingTierUpdate(credits_per_unit=3)) is None
        client.table.assert_not_called()
