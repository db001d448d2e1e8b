"""
Tests for CreditManager over the SQL ledger store.
"""
from unittest.mock import Mock

import pytest

from apps.api.services import CreditManager
from apps.core.config import TransactionType
from apps.core.exceptions import (
    NotFoundError,
    PricingNotFoundError,
    StorageUnavailableError,
    UnexpectedLedgerError,
    ValidationError,
)
from apps.db.models.credit import CreditBalance
from apps.db.models.pricing import PricingTierCreate, PricingTierUpdate


class TestScenarios:
    """End-to-end ledger scenarios."""

    def test_new_user_balance(self, manager):
        balance = manager.get_balance("u1")

        assert (balance.balance, balance.total_purchased, balance.total_used) == (0, 0, 0)

    def test_grant_round_trip(self, manager):
        before = manager.get_balance("u1")

        entry = manager.add_credits("u1", 100, "test")

        after = manager.get_balance("u1")
        history = manager.get_transaction_history("u1")
        assert after.balance == before.balance + 100
        assert after.total_purchased == before.total_purchased + 100
        assert len(history) == 1
        assert history[0].transaction_type == TransactionType.PURCHASE
        assert history[0].balance_after == after.balance
        assert entry.transaction.id == history[0].id

    def test_purchase_then_use(self, manager):
        manager.add_credits("u1", 50, "pack")

        assert manager.consume_credits("u1", 20, "openai", "image-gen") is True

        assert manager.get_balance("u1").balance == 30
        stats = manager.get_usage_stats("u1", 30)
        assert stats.entries == 1
        assert stats.total_credits_used == 20

    def test_insufficient_funds(self, manager):
        manager.add_credits("u1", 10, "pack")

        assert manager.consume_credits("u1", 20, "openai", "image-gen") is False

        balance = manager.get_balance("u1")
        assert balance.balance == 10
        assert balance.total_used == 0
        assert len(manager.get_transaction_history("u1")) == 1

    def test_pricing_lookup(self, manager):
        manager.create_pricing_tier(PricingTierCreate(provider="openai", operation="dalle3", credits_per_unit=10))

        assert manager.get_cost("openai", "dalle3") == 10
        with pytest.raises(PricingNotFoundError):
            manager.get_cost("openai", "unknown")


class TestGrants:
    """Typed grant operations."""

    @pytest.mark.parametrize("amount", [0, -5, 2.5, True])
    def test_add_credits_rejects_non_positive_amounts(self, manager, amount):
        with pytest.raises(ValidationError):
            manager.add_credits("u1", amount, "bad")

        assert manager.get_balance("u1").balance == 0

    def test_bonus_is_typed_and_prefixed(self, manager):
        entry = manager.give_bonus_credits("u1", 25, "welcome")

        assert entry.transaction.transaction_type == TransactionType.BONUS
        assert entry.transaction.description == "Bonus: welcome"
        assert entry.account.total_bonus == 25
        assert entry.account.total_purchased == 0

    def test_refund_against_usage(self, manager):
        manager.add_credits("u1", 50, "pack")
        outcome = manager.consume("u1", 20, "openai", "dalle3")

        entry = manager.refund_credits("u1", 20, "generation failed", reference_transaction_id=str(outcome.transaction.id))

        assert entry.account.balance == 50
        assert entry.transaction.transaction_type == TransactionType.REFUND
        assert entry.transaction.reference_id == str(outcome.transaction.id)
        with pytest.raises(ValidationError):
            manager.refund_credits("u1", 1, "again", reference_transaction_id=str(outcome.transaction.id))

    def test_purchase_with_idempotency_key_applies_once(self, manager):
        manager.add_credits("u1", 100, "Purchased Starter", idempotency_key="checkout-1")
        replay = manager.add_credits("u1", 100, "Purchased Starter", idempotency_key="checkout-1")

        assert replay.replayed is True
        assert manager.get_balance("u1").balance == 100


class TestConsumption:
    """Consumption and priced charges."""

    def test_consume_requires_positive_amount(self, manager):
        with pytest.raises(ValidationError):
            manager.consume("u1", 0, "openai", "image-gen")

    def test_consume_requires_provider_and_operation(self, manager):
        with pytest.raises(ValidationError):
            manager.consume("u1", 1, "", "image-gen")

    def test_charge_operation_uses_pricing(self, seeded_manager):
        seeded_manager.add_credits("u1", 100, "pack")

        outcome = seeded_manager.charge_operation("u1", "openai", "dalle3", units=2)

        assert outcome.consumed is True
        assert outcome.balance == 80
        assert outcome.usage_log.credits_used == 20

    def test_charge_operation_unknown_pricing_blocks(self, manager):
        manager.add_credits("u1", 100, "pack")

        with pytest.raises(PricingNotFoundError):
            manager.charge_operation("u1", "openai", "unknown")

        assert manager.get_balance("u1").balance == 100

    def test_free_operation_writes_nothing(self, manager):
        manager.create_pricing_tier(PricingTierCreate(provider="openai", operation="preview", credits_per_unit=0))

        outcome = manager.charge_operation("u1", "openai", "preview")

        assert outcome.consumed is True
        assert manager.get_transaction_history("u1") == []


class TestReporting:
    """History, usage statistics and reconciliation."""

    @pytest.mark.parametrize("limit", [0, 501, -1])
    def test_history_limit_bounds(self, manager, limit):
        with pytest.raises(ValidationError):
            manager.get_transaction_history("u1", limit)

    def test_usage_stats_empty_window(self, manager):
        stats = manager.get_usage_stats("u1", 7)

        assert stats.total_credits_used == 0
        assert stats.entries == 0
        assert stats.by_provider == {}
        assert stats.by_operation == {}

    def test_usage_stats_rejects_non_positive_days(self, manager):
        with pytest.raises(ValidationError):
            manager.get_usage_stats("u1", 0)

    def test_usage_stats_rejects_oversized_window(self, manager):
        with pytest.raises(ValidationError):
            manager.get_usage_stats("u1", 1_000_000)

    def test_usage_stats_accepts_maximum_window(self, manager):
        stats = manager.get_usage_stats("u1", 3650)

        assert stats.days == 3650
        assert stats.entries == 0

    def test_usage_accounting_groups_by_provider_and_operation(self, manager):
        manager.add_credits("u1", 100, "pack")
        calls = [
            (5, "openai", "image-gen"),
            (10, "openai", "dalle3"),
            (4, "gemini", "image-gen"),
            (3, "freepik", "upscale"),
        ]
        for amount, provider, operation in calls:
            assert manager.consume_credits("u1", amount, provider, operation)
        manager.consume_credits("u1", 1000, "openai", "dalle3")

        stats = manager.get_usage_stats("u1", 30)

        assert stats.total_credits_used == sum(amount for amount, _, _ in calls)
        assert stats.entries == 4
        assert stats.by_provider == {"openai": 15, "gemini": 4, "freepik": 3}
        assert stats.by_operation == {"image-gen": 9, "dalle3": 10, "upscale": 3}

    def test_reconcile_consistent_ledger(self, manager):
        manager.add_credits("u1", 50, "pack")
        manager.give_bonus_credits("u1", 10, "promo")
        manager.consume_credits("u1", 15, "openai", "image-gen")

        report = manager.reconcile("u1")

        assert report.consistent is True
        assert report.stored_balance == report.ledger_balance == report.counters_balance == 45
        assert report.transaction_count == 3


class TestCatalog:
    """Pricing tiers and credit packages."""

    def test_seed_default_catalog_is_idempotent(self, manager):
        first = manager.seed_default_catalog()
        second = manager.seed_default_catalog()

        assert first["pricing_tiers"] > 0
        assert first["credit_packages"] == 3
        assert second == {"pricing_tiers": 0, "credit_packages": 0}

    def test_deactivated_tier_is_not_priced(self, seeded_manager):
        tier = next(t for t in seeded_manager.get_pricing_tiers() if t.operation == "dalle3")

        seeded_manager.update_pricing_tier(str(tier.id), PricingTierUpdate(is_active=False))

        with pytest.raises(PricingNotFoundError):
            seeded_manager.get_cost("openai", "dalle3")
        assert all(t.id != tier.id for t in seeded_manager.get_pricing_tiers())

    def test_update_unknown_tier(self, manager):
        with pytest.raises(NotFoundError):
            manager.update_pricing_tier("00000000-0000-0000-0000-000000000000", PricingTierUpdate(credits_per_unit=1))

    def test_get_unknown_package(self, manager):
        with pytest.raises(NotFoundError):
            manager.get_credit_package("missing")

    def test_packages_ordered_by_size(self, seeded_manager):
        packages = seeded_manager.get_credit_packages()

        assert [p.name for p in packages] == ["Starter", "Creator", "Studio"]


class TestRetries:
    """Reads retry on unavailable storage; writes do not."""

    def _store(self):
        store = Mock()
        store.name = "mock"
        return store

    def test_read_retried_until_success(self):
        store = self._store()
        store.get_or_create_account.side_effect = [
            StorageUnavailableError("get_balance"),
            StorageUnavailableError("get_balance"),
            CreditBalance(user_id="u1", balance=7),
        ]
        manager = CreditManager(store, read_retry_attempts=3, read_retry_backoff_seconds=0)

        assert manager.get_balance("u1").balance == 7
        assert store.get_or_create_account.call_count == 3

    def test_read_gives_up_after_attempts(self):
        store = self._store()
        store.list_transactions.side_effect = StorageUnavailableError("list_transactions")
        manager = CreditManager(store, read_retry_attempts=2, read_retry_backoff_seconds=0)

        with pytest.raises(StorageUnavailableError):
            manager.get_transaction_history("u1", 10)
        assert store.list_transactions.call_count == 2

    def test_explicit_zero_attempts_disables_retries(self):
        store = self._store()
        store.get_or_create_account.side_effect = StorageUnavailableError("get_balance")
        manager = CreditManager(store, read_retry_attempts=0, read_retry_backoff_seconds=0)

        with pytest.raises(StorageUnavailableError):
            manager.get_balance("u1")
        assert manager.read_retry_attempts == 0
        assert store.get_or_create_account.call_count == 1

    def test_unexpected_errors_are_not_retried(self):
        store = self._store()
        store.get_or_create_account.side_effect = UnexpectedLedgerError("get_balance")
        manager = CreditManager(store, read_retry_attempts=3, read_retry_backoff_seconds=0)

        with pytest.raises(UnexpectedLedgerError):
            manager.get_balance("u1")
        assert store.get_or_create_account.call_count == 1

    def test_consume_is_not_retried(self):
        store = self._store()
        store.consume.side_effect = StorageUnavailableError("consume")
        manager = CreditManager(store, read_retry_attempts=3, read_retry_backoff_seconds=0)

        with pytest.raises(StorageUnavailableError):
            manager.consume_credits("u1", 5, "openai", "image-gen")
        assert store.consume.call_count == 1
