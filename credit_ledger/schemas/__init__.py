"""Pydantic schemas used by the HTTP layer."""
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreditSummaryResponse(BaseModel):
    allowed: bool
    balance: int
    wallet_balance: int
    subscription_balance: int


class CombinedBalanceResponse(BaseModel):
    wallet_balance: int
    subscription_balance: int
    total_balance: int


class EligibilityRequest(BaseModel):
    required_credits: int = Field(..., gt=0)


class EligibilityResponse(BaseModel):
    has_enough: bool
    source: Literal["wallet", "subscription", "both", "none"]
    balance: CombinedBalanceResponse


class DeductRequest(BaseModel):
    amount: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=255)
    reference_id: Optional[str] = Field(default=None, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)


class DeductResponse(BaseModel):
    wallet_deducted: int
    subscription_deducted: int


class RefundRequest(BaseModel):
    amount: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=255)
    reference_id: Optional[str] = Field(default=None, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)


class FulfilPurchaseRequest(BaseModel):
    package_id: str
    reference_id: str = Field(..., min_length=1, max_length=255)
    amount_paid_cents: Optional[int] = Field(default=None, ge=0)


class TransactionResponse(BaseModel):
    id: int
    type: str
    amount: int
    source: str
    description: Optional[str] = None
    reference_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]


class FulfilPurchaseResponse(BaseModel):
    package_id: str
    credits_granted: int
    bonus_granted: int
    transactions: list[TransactionResponse]


class CreditPackageResponse(BaseModel):
    id: str
    name: str
    credits: int
    bonus_credits: int
    price_cents: int
    price_display: str
    description: str
    popular: bool

    model_config = ConfigDict(from_attributes=True)
