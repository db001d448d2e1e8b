"""
Pricing router exposing the active pricing tiers.
"""
from typing import List

from fastapi import APIRouter, Depends

from apps.api.dependencies import get_credit_manager
from apps.api.services import CreditManager
from apps.core.security import SupabaseUser, get_current_active_user
from apps.db.models.pricing import PricingTierRead

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/tiers", response_model=List[PricingTierRead])
def get_pricing_tiers(
    current_user: SupabaseUser = Depends(get_current_active_user),
    manager: CreditManager = Depends(get_credit_manager),
):
    """List active pricing tiers."""
    return manager.get_pricing_tiers()
