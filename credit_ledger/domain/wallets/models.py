"""Domain models for wallet and transaction log records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    BONUS = "bonus"
    REFUND = "refund"
    EXPIRATION = "expiration"


class TransactionSource(str, Enum):
    WALLET = "wallet"
    SUBSCRIPTION = "subscription"


@dataclass(slots=True)
class WalletSnapshot:
    user_id: str
    balance: int
    purchased_credits: int
    bonus_credits: int
    expires_at: Optional[datetime]
    version: int
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class NewTransaction:
    user_id: str
    type: TransactionType
    amount: int
    description: Optional[str]
    source: TransactionSource = TransactionSource.WALLET
    reference_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    idempotency_key: Optional[str] = None


@dataclass(slots=True)
class TransactionRecord:
    id: int
    user_id: str
    type: TransactionType
    amount: int
    source: TransactionSource
    description: Optional[str]
    reference_id: Optional[str]
    metadata: dict[str, Any]
    created_at: datetime
