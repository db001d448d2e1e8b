"""
FastAPI dependencies shared by the routers.
"""
from apps.api.services import CreditManager
from apps.ledger import get_ledger_store


def get_credit_manager() -> CreditManager:
    """Credit manager bound to the configured ledger store."""
    return CreditManager(get_ledger_store())
