# Database models
from .credit import (
    CreditAccount, CreditBalance, CreditTransaction, CreditTransactionRead,
    UsageLog, UsageLogRead, UsageStats, ReconciliationReport,
)
from .pricing import (
    PricingTier, PricingTierCreate, PricingTierUpdate, PricingTierRead,
    CreditPackage, CreditPackageCreate, CreditPackageRead,
)

__all__ = [
    # Ledger models
    "CreditAccount", "CreditBalance", "CreditTransaction", "CreditTransactionRead",
    "UsageLog", "UsageLogRead", "UsageStats", "ReconciliationReport",
    # Catalog models
    "PricingTier", "PricingTierCreate", "PricingTierUpdate", "PricingTierRead",
    "CreditPackage", "CreditPackageCreate", "CreditPackageRead",
]
