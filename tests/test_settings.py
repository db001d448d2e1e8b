"""
Tests for settings parsing and production validation.
"""
import pytest
from pydantic import ValidationError

from apps.core.settings import Settings


class TestSettings:
    """Environment-driven configuration."""

    def test_origins_split_on_commas(self):
        config = Settings(allowed_origins="https://app.example.com, https://admin.example.com")

        assert config.allowed_origins == ["https://app.example.com", "https://admin.example.com"]

    def test_unknown_ledger_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(ledger_backend="redis")

    def test_backend_name_normalized(self):
        assert Settings(ledger_backend=" SQL ").ledger_backend == "sql"

    @pytest.mark.parametrize("log_level, expected", [
        ("debug", 10),
        ("WARNING", 30),
        ("warn", 30),
        ("critical", 50),
        ("verbose", 20),
    ])
    def test_log_level_number(self, log_level, expected):
        assert Settings(log_level=log_level).log_level_number == expected

    def test_development_config_has_no_issues(self):
        assert Settings(environment="development").validate_production_config() == []

    def test_production_issues_reported(self):
        config = Settings(
            environment="production",
            ledger_backend="sql",
            database_url="sqlite:///./ledger.db",
            dev_billing_mode="mock",
            supabase_jwt_secret="short",
            allowed_origins="http://localhost:3000",
        )

        issues = config.validate_production_config()

        assert "SQLite ledger storage is not suitable for production" in issues
        assert "Billing mode should be 'live' in production" in issues
        assert "Supabase JWT secret should be at least 32 characters long" in issues
        assert "Localhost origins should be removed in production" in issues

    def test_clean_production_config(self):
        config = Settings(
            environment="production",
            ledger_backend="supabase",
            supabase_service_role_key="service-key",
            supabase_jwt_secret="x" * 40,
            dev_billing_mode="live",
            allowed_origins="https://app.example.com",
            seed_default_catalog=False,
        )

        assert config.validate_production_config() == []
