"""
Shared fixtures for ledger, service and API tests.
"""

import os
import tempfile
import time

import jwt
import pytest

TEST_JWT_SECRET = "test-supabase-jwt-secret-for-the-ledger-suite"


# Environment setup for tests
def setup_test_environment():
    """Setup environment variables before settings are loaded."""
    database_dir = tempfile.mkdtemp(prefix="credit-ledger-")
    env_vars = {
        "ENVIRONMENT": "testing",
        "LEDGER_BACKEND": "sql",
        "DATABASE_URL": f"sqlite:///{os.path.join(database_dir, 'ledger.db')}",
        "SUPABASE_JWT_SECRET": TEST_JWT_SECRET,
        "LEDGER_READ_RETRY_ATTEMPTS": "3",
        "LEDGER_READ_RETRY_BACKOFF_SECONDS": "0",
        "ENABLE_RATE_LIMITING": "false",
        "SEED_DEFAULT_CATALOG": "false",
        "DEV_BILLING_MODE": "mock",
        "SENTRY_DSN": "",
        "LOG_LEVEL": "WARNING",
    }

    for key, value in env_vars.items():
        os.environ[key] = value


def pytest_configure(config):
    """Configure pytest for the ledger suite."""
    setup_test_environment()


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine, fresh per test."""
    from apps.db.session import build_engine, create_db_and_tables

    test_engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}", echo=False)
    create_db_and_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def store(engine):
    from apps.ledger.sql_store import SQLLedgerStore
    return SQLLedgerStore(engine)


@pytest.fixture
def manager(store):
    from apps.api.services import CreditManager
    return CreditManager(store, read_retry_attempts=3, read_retry_backoff_seconds=0)


@pytest.fixture
def seeded_manager(manager):
    """Manager with the default pricing tiers and packages loaded."""
    manager.seed_default_catalog()
    return manager


def make_token(user_id: str, email: str = None, app_role: str = None, role: str = "authenticated") -> str:
    """Sign a Supabase-style access token for tests."""
    payload = {
        "sub": user_id,
        "email": email or f"{user_id}@example.com",
        "aud": "authenticated",
        "role": role,
        "exp": int(time.time()) + 3600,
        "app_metadata": {"role": app_role} if app_role else {},
    }
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def token_for():
    """Factory signing tokens for arbitrary users."""
    return make_token


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token('user-1')}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token('admin-1', app_role='admin')}"}


@pytest.fixture
def client(manager):
    """API client wired to the per-test SQL ledger."""
    from fastapi.testclient import TestClient
    from apps.api.dependencies import get_credit_manager
    from apps.api.main import app

    app.dependency_overrides[get_credit_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()
