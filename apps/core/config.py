"""
Ledger constants, enums and the default catalog.
"""
from enum import Enum


class TransactionType(str, Enum):
    """Credit transaction types."""
    PURCHASE = "purchase"
    USAGE = "usage"
    BONUS = "bonus"
    REFUND = "refund"


class LedgerBackend(str, Enum):
    """Storage backends for the credit ledger."""
    SUPABASE = "supabase"
    SQL = "sql"


class BillingMode(str, Enum):
    """How package purchases are settled."""
    MOCK = "mock"
    LIVE = "live"


# Account counter bumped by each credit-increasing transaction type
COUNTER_FOR_TYPE = {
    TransactionType.PURCHASE: "total_purchased",
    TransactionType.BONUS: "total_bonus",
    TransactionType.REFUND: "total_refunded",
}


# Seed pricing for the AI operations the platform meters
DEFAULT_PRICING_TIERS = [
    {"provider": "openai", "operation": "dalle3", "credits_per_unit": 10, "unit_name": "image"},
    {"provider": "openai", "operation": "image-gen", "credits_per_unit": 5, "unit_name": "image"},
    {"provider": "openai", "operation": "image-edit", "credits_per_unit": 5, "unit_name": "image"},
    {"provider": "openai", "operation": "prompt-enhance", "credits_per_unit": 1, "unit_name": "request"},
    {"provider": "gemini", "operation": "image-gen", "credits_per_unit": 4, "unit_name": "image"},
    {"provider": "gemini", "operation": "image-edit", "credits_per_unit": 4, "unit_name": "image"},
    {"provider": "freepik", "operation": "upscale", "credits_per_unit": 3, "unit_name": "image"},
    {"provider": "freepik", "operation": "style-transfer", "credits_per_unit": 3, "unit_name": "image"},
    {"provider": "freepik", "operation": "image-to-video", "credits_per_unit": 20, "unit_name": "video"},
]

DEFAULT_CREDIT_PACKAGES = [
    {"name": "Starter", "credits_amount": 100, "price_cents": 999, "currency": "usd", "is_popular": False},
    {"name": "Creator", "credits_amount": 500, "price_cents": 3999, "currency": "usd", "is_popular": True},
    {"name": "Studio", "credits_amount": 1500, "price_cents": 9999, "currency": "usd", "is_popular": False},
]
