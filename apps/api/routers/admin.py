"""
Admin router for catalog management and manual ledger adjustments.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from apps.api.dependencies import get_credit_manager
from apps.api.services import CreditManager
from apps.core.security import SupabaseUser, require_admin
from apps.db.models.credit import ReconciliationReport
from apps.db.models.pricing import (
    CreditPackageCreate,
    CreditPackageRead,
    PricingTierCreate,
    PricingTierRead,
    PricingTierUpdate,
)
from apps.ledger.base import LedgerEntry

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class GrantRequest(BaseModel):
    amount: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=500)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RefundRequest(GrantRequest):
    reference_transaction_id: Optional[str] = None


def _entry_response(entry: LedgerEntry) -> Dict[str, Any]:
    return {
        "account": entry.account,
        "transaction": entry.transaction,
        "replayed": entry.replayed,
    }


@router.post("/pricing/tiers", response_model=PricingTierRead, status_code=201)
def create_pricing_tier(
    tier: PricingTierCreate,
    admin: SupabaseUser = Depends(require_admin),
    manager: CreditManager = Depends(get_credit_manager),
):
    return manager.create_pricing_tier(tier)


@router.patch("/pricing/tiers/{tier_id}", response_model=PricingTierRead)
def update_pricing_tier(
    tier_id: str,
    changes: PricingTierUpdate,
    admin: SupabaseUser = Depends(require_admin),
    manager: CreditManager = Depends(get_credit_manager),
):
    return manager.update_pricing_tier(tier_id, changes)


@router.post("/packages", response_model=CreditPackageRead, status_code=201)
def create_credit_package(
    package: CreditPackageCreate,
    admin: SupabaseUser = Depends(require_admin),
    manager: CreditManager = Depends(get_credit_manager),
):
    return manager.create_credit_package(package)


@router.post("/credits/{user_id}/grant")
def grant_credits(
    user_id: str,
    body: GrantRequest,
    idempotency_key: Optional[str] = Header(default=None, max_length=255),
    admin: SupabaseUser = Depends(require_admin),
    manager: CreditManager = Depends(get_credit_manager),
) -> Dict[str, Any]:
    """Record a purchase made outside the API."""
    logger.info("Admin grant", admin_id=admin.id, user_id=user_id, amount=body.amount)
    entry = manager.add_credits(
        user_id, body.amount, body.description,
        metadata={**body.metadata, "granted_by": admin.id},
        idempotency_key=idempotency_key,
    )
    return _entry_response(entry)


@router.post("/credits/{user_id}/bonus")
def give_bonus_credits(
    user_id: str,
    body: GrantRequest,
    idempotency_key: Optional[str] = Header(default=None, max_length=255),
    admin: SupabaseUser = Depends(require_admin),
    manager: CreditManager = Depends(get_credit_manager),
) -> Dict[str, Any]:
    logger.info("Admin bonus", admin_id=admin.id, user_id=user_id, amount=body.amount)
    entry = manager.give_bonus_credits(
        user_id, body.amount, body.description,
        metadata={**body.metadata, "granted_by": admin.id},
        idempotency_key=idempotency_key,
    )
    return _entry_response(entry)


@router.post("/credits/{user_id}/refund")
def refund_credits(
    user_id: str,
    body: RefundRequest,
    idempotency_key: Optional[str] = Header(default=None, max_length=255),
    admin: SupabaseUser = Depends(require_admin),
    manager: CreditManager = Depends(get_credit_manager),
) -> Dict[str, Any]:
    logger.info("Admin refund", admin_id=admin.id, user_id=user_id, amount=body.amount)
    entry = manager.refund_credits(
        user_id, body.amount, body.description,
        reference_transaction_id=body.reference_transaction_id,
        metadata={**body.metadata, "refunded_by": admin.id},
        idempotency_key=idempotency_key,
    )
    return _entry_response(entry)


@router.get("/credits/{user_id}/reconcile", response_model=ReconciliationReport)
def reconcile_account(
    user_id: str,
    admin: SupabaseUser = Depends(require_admin),
    manager: CreditManager = Depends(get_credit_manager),
):
    """Check a stored balance against its transaction log."""
    return manager.reconcile(user_id)
