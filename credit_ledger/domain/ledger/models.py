"""Result types returned by the credit ledger service."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BalanceSource(str, Enum):
    WALLET = "wallet"
    SUBSCRIPTION = "subscription"
    BOTH = "both"
    NONE = "none"


@dataclass(slots=True)
class CombinedBalance:
    wallet: int
    subscription: int
    total: int


@dataclass(slots=True)
class EligibilityResult:
    has_enough: bool
    balance: CombinedBalance
    source: BalanceSource


@dataclass(slots=True)
class DeductionResult:
    wallet_deducted: int
    subscription_deducted: int

    @property
    def total(self) -> int:
        return self.wallet_deducted + self.subscription_deducted


@dataclass(slots=True)
class AuditReport:
    """Replay of the transaction log against the live wallet row."""

    user_id: str
    wallet_balance: int
    ledger_wallet_total: int
    lifetime_granted: int
    ledger_granted_total: int

    @property
    def consistent(self) -> bool:
        return (
            self.wallet_balance == self.ledger_wallet_total
            and self.lifetime_granted == self.ledger_granted_total
        )


def classify_source(balance: CombinedBalance, required: int) -> BalanceSource:
    if balance.total < required:
        return BalanceSource.NONE
    if balance.wallet >= required:
        return BalanceSource.WALLET
    if balance.subscription >= required:
        return BalanceSource.SUBSCRIPTION
    return BalanceSource.BOTH
