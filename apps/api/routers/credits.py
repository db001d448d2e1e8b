"""
Credits router for balances, history, usage and consumption.

Handlers are plain ``def`` so they run in the threadpool; a client that
disconnects mid-request does not cancel a ledger mutation already under way.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field

from apps.api.dependencies import get_credit_manager
from apps.api.rate_limit import limiter
from apps.api.services import CreditManager
from apps.core.exceptions import InsufficientCreditsError
from apps.core.monitoring import capture_ledger_context
from apps.core.security import SupabaseUser, get_current_active_user
from apps.core.settings import settings
from apps.db.models.credit import CreditBalance, CreditTransactionRead, UsageLogRead, UsageStats

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


class ConsumeRequest(BaseModel):
    """Body of a consumption request; ``amount`` defaults to the priced cost."""
    provider: str = Field(min_length=1, max_length=64)
    operation: str = Field(min_length=1, max_length=128)
    amount: Optional[int] = Field(default=None, gt=0)
    units: int = Field(default=1, gt=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConsumeResponse(BaseModel):
    consumed: bool
    balance: int
    replayed: bool = False
    transaction: Optional[CreditTransactionRead] = None
    usage_log: Optional[UsageLogRead] = None


@router.get("")
def get_credit_transactions(
    limit: int = Query(default=settings.default_history_limit),
    current_user: SupabaseUser = Depends(get_current_active_user),
    manager: CreditManager = Depends(get_credit_manager),
) -> Dict[str, Any]:
    """Get user's credit balance and recent transactions."""
    transactions = manager.get_transaction_history(current_user.id, limit)
    balance = manager.get_balance(current_user.id)

    return {
        "current_credits": balance.balance,
        "transactions": transactions,
        "total_transactions": len(transactions),
    }


@router.get("/balance", response_model=CreditBalance)
def get_credit_balance(
    current_user: SupabaseUser = Depends(get_current_active_user),
    manager: CreditManager = Depends(get_credit_manager),
):
    """Get user's current credit balance."""
    return manager.get_balance(current_user.id)


@router.get("/transactions", response_model=List[CreditTransactionRead])
def get_transaction_history(
    limit: int = Query(default=settings.default_history_limit),
    current_user: SupabaseUser = Depends(get_current_active_user),
    manager: CreditManager = Depends(get_credit_manager),
):
    return manager.get_transaction_history(current_user.id, limit)


@router.get("/usage", response_model=UsageStats)
def get_usage_stats(
    days: int = Query(default=settings.default_usage_window_days),
    current_user: SupabaseUser = Depends(get_current_active_user),
    manager: CreditManager = Depends(get_credit_manager),
):
    """Credits used over the trailing window, grouped by provider and operation."""
    return manager.get_usage_stats(current_user.id, days)


@router.get("/cost")
def get_operation_cost(
    provider: str = Query(min_length=1),
    operation: str = Query(min_length=1),
    current_user: SupabaseUser = Depends(get_current_active_user),
    manager: CreditManager = Depends(get_credit_manager),
) -> Dict[str, Any]:
    return {
        "provider": provider,
        "operation": operation,
        "credits_per_unit": manager.get_cost(provider, operation),
    }


@router.post("/consume", response_model=ConsumeResponse)
@limiter.limit(settings.consume_rate_limit)
def consume_credits(
    request: Request,
    body: ConsumeRequest,
    idempotency_key: Optional[str] = Header(default=None, max_length=255),
    current_user: SupabaseUser = Depends(get_current_active_user),
    manager: CreditManager = Depends(get_credit_manager),
):
    """
    Spend credits on a metered operation.

    Without ``amount`` the cost comes from the active pricing tier times
    ``units``. Responds 402 when the balance cannot cover it.
    """
    capture_ledger_context(current_user.id, "consume", provider=body.provider)
    if body.amount is None:
        outcome = manager.charge_operation(
            current_user.id, body.provider, body.operation,
            units=body.units, metadata=body.metadata, idempotency_key=idempotency_key,
        )
        required = None
    else:
        outcome = manager.consume(
            current_user.id, body.amount, body.provider, body.operation,
            metadata=body.metadata, idempotency_key=idempotency_key,
        )
        required = body.amount

    if not outcome.consumed:
        if required is None:
            required = manager.get_cost(body.provider, body.operation) * body.units
        raise InsufficientCreditsError(required=required, available=outcome.balance)

    return ConsumeResponse(
        consumed=True,
        balance=outcome.balance,
        replayed=outcome.replayed,
        transaction=outcome.transaction,
        usage_log=outcome.usage_log,
    )
