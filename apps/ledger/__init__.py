"""
Ledger storage backends and factory.
"""
from functools import lru_cache

import structlog

from apps.core.config import LedgerBackend
from apps.core.settings import settings
from .base import ConsumeOutcome, LedgerEntry, LedgerStore, check_replay

logger = structlog.get_logger(__name__)


def create_ledger_store(backend: str = None) -> LedgerStore:
    """Build the ledger store named by ``backend`` (defaults to settings)."""
    backend = LedgerBackend(backend or settings.ledger_backend)

    if backend == LedgerBackend.SQL:
        from apps.db.session import build_engine, create_db_and_tables
        from .sql_store import SQLLedgerStore

        engine = build_engine()
        create_db_and_tables(engine)
        store = SQLLedgerStore(engine)
    else:
        from apps.core.supabase_client import service_client
        from .supabase_store import SupabaseLedgerStore

        store = SupabaseLedgerStore(service_client())

    logger.info("Ledger store initialized", backend=store.name)
    return store


@lru_cache()
def get_ledger_store() -> LedgerStore:
    """Process-wide ledger store used by the API."""
    return create_ledger_store()


__all__ = [
    "ConsumeOutcome",
    "LedgerEntry",
    "LedgerStore",
    "check_replay",
    "create_ledger_store",
    "get_ledger_store",
]
