"""
Billing router for credit packages.

Payment processing is not part of this service. In ``mock`` billing mode a
purchase grants the package's credits directly; in ``live`` mode purchases
are refused until a payment provider settles them.
"""
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel

from apps.api.dependencies import get_credit_manager
from apps.api.services import CreditManager
from apps.core.config import BillingMode
from apps.core.exceptions import PaymentError
from apps.core.security import SupabaseUser, get_current_active_user
from apps.core.settings import settings
from apps.db.models.credit import CreditBalance, CreditTransactionRead
from apps.db.models.pricing import CreditPackageRead

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


class PurchaseResponse(BaseModel):
    package: CreditPackageRead
    account: CreditBalance
    transaction: CreditTransactionRead
    replayed: bool = False


@router.get("/packages", response_model=List[CreditPackageRead])
def get_credit_packages(
    current_user: SupabaseUser = Depends(get_current_active_user),
    manager: CreditManager = Depends(get_credit_manager),
):
    """List purchasable credit packages."""
    return manager.get_credit_packages()


@router.post("/packages/{package_id}/purchase", response_model=PurchaseResponse)
def purchase_credit_package(
    package_id: str,
    idempotency_key: Optional[str] = Header(default=None, max_length=255),
    current_user: SupabaseUser = Depends(get_current_active_user),
    manager: CreditManager = Depends(get_credit_manager),
):
    """Buy a credit package."""
    package = manager.get_credit_package(package_id)
    if not package.is_active:
        raise PaymentError(f"Package {package.name} is not available")

    if BillingMode(settings.dev_billing_mode) != BillingMode.MOCK:
        logger.warning("Live purchase attempted without payment provider", user_id=current_user.id, package_id=package_id)
        raise PaymentError("Payment processing is not available")

    entry = manager.add_credits(
        current_user.id,
        package.credits_amount,
        f"Purchased {package.name}",
        metadata={
            "package_id": str(package.id),
            "price_cents": package.price_cents,
            "currency": package.currency,
        },
        idempotency_key=idempotency_key,
    )

    return PurchaseResponse(
        package=package,
        account=entry.account,
        transaction=entry.transaction,
        replayed=entry.replayed,
    )
