"""
Catalog models: pricing tiers for metered operations and purchasable credit packages.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel
from apps.db.models.credit import utcnow


class PricingTierBase(SQLModel):
    """Base pricing tier model with shared fields."""
    provider: str = Field(min_length=1, max_length=64, index=True)
    operation: str = Field(min_length=1, max_length=128, index=True)
    credits_per_unit: int = Field(ge=0, description="Credits charged per unit of the operation")
    unit_name: str = Field(default="request", max_length=32)
    is_active: bool = Field(default=True)


class PricingTier(PricingTierBase, table=True):
    """Pricing tier database model."""
    __tablename__ = "pricing_tiers"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class PricingTierCreate(PricingTierBase):
    """Pricing tier creation schema."""
    pass


class PricingTierUpdate(SQLModel):
    """Pricing tier partial update schema."""
    credits_per_unit: Optional[int] = Field(default=None, ge=0)
    unit_name: Optional[str] = Field(default=None, max_length=32)
    is_active: Optional[bool] = None


class PricingTierRead(PricingTierBase):
    """Pricing tier read schema."""
    id: UUID
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CreditPackageBase(SQLModel):
    """Base credit package model with shared fields."""
    name: str = Field(min_length=1, max_length=128)
    credits_amount: int = Field(gt=0)
    price_cents: int = Field(ge=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    is_popular: bool = Field(default=False)
    is_active: bool = Field(default=True)


class CreditPackage(CreditPackageBase, table=True):
    """Purchasable credit bundle."""
    __tablename__ = "credit_packages"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class CreditPackageCreate(CreditPackageBase):
    """Credit package creation schema."""
    pass


class CreditPackageRead(CreditPackageBase):
    """Credit package read schema."""
    id: UUID
    created_at: Optional[datetime] = None
