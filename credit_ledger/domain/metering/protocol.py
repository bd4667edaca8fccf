"""Contract the ledger assumes of the external subscription meter."""

from __future__ import annotations

from typing import Protocol


class SubscriptionMeterError(Exception):
    """Base class for failures reported by the subscription meter."""


class MeterUnavailableError(SubscriptionMeterError):
    """The meter could not be reached or answered with a server error."""


class AllowanceExceededError(SubscriptionMeterError):
    """The meter refused a debit because the allowance is exhausted."""


class SubscriptionMeter(Protocol):
    async def check_balance(self, user_id: str, feature_id: str) -> int:
        """Return the remaining allowance for ``feature_id``."""
        ...

    async def debit(self, user_id: str, feature_id: str, amount: int) -> None:
        """Record ``amount`` units of usage.

        A failed debit is not safe to retry: the meter may already have
        counted it.
        """
        ...
