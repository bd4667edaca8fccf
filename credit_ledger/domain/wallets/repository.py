"""Repository protocols for the wallet store and the transaction log."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from .models import NewTransaction, TransactionRecord, WalletSnapshot


class WalletRepository(Protocol):
    async def get(self, user_id: str) -> WalletSnapshot | None:
        ...

    async def get_or_create(self, user_id: str) -> WalletSnapshot:
        ...

    async def apply_delta(
        self,
        wallet: WalletSnapshot,
        balance_delta: int,
        *,
        purchased_delta: int = 0,
        bonus_delta: int = 0,
        expires_at: datetime | None = None,
    ) -> WalletSnapshot:
        """Apply the delta only if ``wallet.version`` is still current.

        Raises ``ConcurrencyError`` when another writer got there first or the
        delta would take the balance below zero.
        """
        ...


class TransactionLog(Protocol):
    async def append(self, entry: NewTransaction) -> TransactionRecord:
        ...

    async def append_once(self, entry: NewTransaction) -> tuple[TransactionRecord, bool]:
        """Append unless an entry with the same idempotency key exists.

        Returns ``(record, created)``. Losing a race on the key yields the
        winner's record rather than an error.
        """
        ...

    async def history(self, user_id: str, limit: int, offset: int) -> Sequence[TransactionRecord]:
        ...

    async def find_by_idempotency_key(self, key: str) -> TransactionRecord | None:
        ...

    async def wallet_total(self, user_id: str) -> int:
        ...

    async def granted_total(self, user_id: str) -> int:
        ...
