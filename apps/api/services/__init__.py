"""
Services package for business logic components.
"""

from .credits import CreditManager

__all__ = [
    'CreditManager',
]
