"""
Application settings and configuration management.
"""
import logging
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase Configuration
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""

    # Ledger storage
    ledger_backend: str = "supabase"  # "supabase" or "sql"
    database_url: str = "sqlite:///./credit_ledger.db"
    database_echo: bool = False

    # Read retries (writes are never retried by the manager)
    ledger_read_retry_attempts: int = 3
    ledger_read_retry_backoff_seconds: float = 0.2

    # Reporting defaults
    default_history_limit: int = 50
    max_history_limit: int = 500
    default_usage_window_days: int = 30
    max_usage_window_days: int = 3650

    # Catalog
    seed_default_catalog: bool = False

    # Billing
    dev_billing_mode: str = "mock"  # "mock" or "live"

    # Application Settings
    environment: str = "development"
    app_version: str = "1.0.0"

    # CORS Settings
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # Logging
    log_level: str = "INFO"

    # Monitoring & Observability
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.1
    enable_metrics: bool = True

    # Rate Limiting
    enable_rate_limiting: bool = True
    rate_limit_storage_uri: str = "memory://"
    consume_rate_limit: str = "120/minute"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("allowed_origins")
    def validate_origins(cls, v):
        """Convert comma-separated origins string to list."""
        if isinstance(v, list):
            return v
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    @field_validator("ledger_backend")
    def validate_ledger_backend(cls, v):
        backend = v.strip().lower()
        if backend not in ("supabase", "sql"):
            raise ValueError("ledger_backend must be 'supabase' or 'sql'")
        return backend

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def log_level_number(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO

    def validate_production_config(self) -> List[str]:
        """Validate production configuration and return list of issues."""
        issues = []

        if self.is_production:
            if self.dev_billing_mode == "mock":
                issues.append("Billing mode should be 'live' in production")

            if self.ledger_backend == "sql" and self.database_url.startswith("sqlite"):
                issues.append("SQLite ledger storage is not suitable for production")

            if self.ledger_backend == "supabase" and not self.supabase_service_role_key:
                issues.append("Supabase service role key is required for ledger RPC calls")

            if len(self.supabase_jwt_secret) < 32:
                issues.append("Supabase JWT secret should be at least 32 characters long")

            if any("localhost" in origin for origin in self.allowed_origins):
                issues.append("Localhost origins should be removed in production")

            if self.seed_default_catalog:
                issues.append("Default catalog seeding should be disabled in production")

        return issues


# Global settings instance
settings = Settings()
