"""
Credit ledger models: accounts, transactions and usage logs.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4
from sqlalchemy import JSON, CheckConstraint, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel
from apps.core.config import TransactionType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditAccountBase(SQLModel):
    """Base credit account model with shared fields."""
    balance: int = Field(default=0, ge=0, description="Spendable credits")
    total_purchased: int = Field(default=0, ge=0)
    total_bonus: int = Field(default=0, ge=0)
    total_refunded: int = Field(default=0, ge=0)
    total_used: int = Field(default=0, ge=0)


class CreditAccount(CreditAccountBase, table=True):
    """Per-user balance row. One row per user, never deleted."""
    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
    )

    user_id: str = Field(primary_key=True, max_length=255)
    version: int = Field(default=0, description="Bumped on every ledger mutation")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class CreditBalance(CreditAccountBase):
    """User credit balance summary."""
    user_id: str
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CreditTransactionBase(SQLModel):
    """Base credit transaction model with shared fields."""
    amount: int = Field(description="Credit amount (positive for additions, negative for usage)")
    transaction_type: TransactionType = Field(description="Type of transaction")
    balance_after: int = Field(description="Account balance once this transaction applied")
    sequence: int = Field(description="Account version after this transaction")
    reference_id: Optional[str] = Field(default=None, description="Usage transaction a refund reverses")
    idempotency_key: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, description="Human-readable description")


class CreditTransaction(CreditTransactionBase, table=True):
    """Credit transaction database model. Append-only."""
    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_credit_transactions_user_sequence"),
        UniqueConstraint("user_id", "idempotency_key", name="uq_credit_transactions_user_idempotency_key"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(foreign_key="credit_accounts.user_id", index=True, max_length=255)
    transaction_type: str = Field(max_length=32, description="Type of transaction")
    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)


class CreditTransactionRead(CreditTransactionBase):
    """Credit transaction read schema (for API responses)."""
    id: UUID
    user_id: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class UsageLogBase(SQLModel):
    """Base usage log model with shared fields."""
    provider: str = Field(max_length=64)
    operation: str = Field(max_length=128)
    credits_used: int = Field(ge=0)


class UsageLog(UsageLogBase, table=True):
    """Audit row for a metered AI operation, written with its usage transaction."""
    __tablename__ = "usage_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(foreign_key="credit_accounts.user_id", index=True, max_length=255)
    transaction_id: UUID = Field(foreign_key="credit_transactions.id", unique=True)
    request_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    response_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)


class UsageLogRead(UsageLogBase):
    """Usage log read schema."""
    id: UUID
    user_id: str
    transaction_id: UUID
    request_metadata: Dict[str, Any] = Field(default_factory=dict)
    response_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class UsageStats(SQLModel):
    """Usage aggregated over a trailing window."""
    user_id: str
    days: int
    since: datetime
    total_credits_used: int = 0
    entries: int = 0
    by_provider: Dict[str, int] = Field(default_factory=dict)
    by_operation: Dict[str, int] = Field(default_factory=dict)


class ReconciliationReport(SQLModel):
    """Stored balance checked against the transaction log."""
    user_id: str
    stored_balance: int
    ledger_balance: int
    counters_balance: int
    transaction_count: int
    consistent: bool
