"""
Client-side helpers for credit-gated actions.
"""
from .tracker import CreditBackend, CreditTracker

__all__ = ["CreditBackend", "CreditTracker"]
