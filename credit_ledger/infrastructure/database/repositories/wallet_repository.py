"""SQLAlchemy implementation of the wallet store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from credit_ledger.db.models import Wallet
from credit_ledger.domain.common import AsyncRepository
from credit_ledger.domain.exceptions import ConcurrencyError
from credit_ledger.domain.wallets.models import WalletSnapshot

logger = logging.getLogger(__name__)

_SNAPSHOT_COLUMNS = (
    Wallet.user_id,
    Wallet.balance,
    Wallet.purchased_credits,
    Wallet.bonus_credits,
    Wallet.expires_at,
    Wallet.version,
    Wallet.updated_at,
)


class SqlWalletRepository(AsyncRepository[Wallet]):
    async def get(self, user_id: str) -> WalletSnapshot | None:
        stmt = select(*_SNAPSHOT_COLUMNS).where(Wallet.user_id == user_id)
        result = await self.session.execute(stmt)
        row = result.first()
        return self._to_snapshot(row) if row is not None else None

    async def get_or_create(self, user_id: str) -> WalletSnapshot:
        wallet = await self.get(user_id)
        if wallet is not None:
            return wallet
        await self._insert_if_absent(user_id)
        wallet = await self.get(user_id)
        if wallet is None:
            raise RuntimeError(f"wallet for user {user_id} vanished after insert")
        return wallet

    async def apply_delta(
        self,
        wallet: WalletSnapshot,
        balance_delta: int,
        *,
        purchased_delta: int = 0,
        bonus_delta: int = 0,
        expires_at: datetime | None = None,
    ) -> WalletSnapshot:
        values: dict[str, Any] = {
            "balance": Wallet.balance + balance_delta,
            "version": Wallet.version + 1,
        }
        if purchased_delta:
            values["purchased_credits"] = Wallet.purchased_credits + purchased_delta
        if bonus_delta:
            values["bonus_credits"] = Wallet.bonus_credits + bonus_delta
        if expires_at is not None:
            values["expires_at"] = expires_at

        stmt = (
            update(Wallet)
            .where(
                Wallet.user_id == wallet.user_id,
                Wallet.version == wallet.version,
                Wallet.balance + balance_delta >= 0,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
            .returning(*_SNAPSHOT_COLUMNS)
        )
        result = await self.session.execute(stmt)
        row = result.first()
        if row is None:
            raise ConcurrencyError(
                f"wallet {wallet.user_id} changed since version {wallet.version}"
            )
        return self._to_snapshot(row)

    async def _insert_if_absent(self, user_id: str) -> None:
        values = {
            "user_id": user_id,
            "balance": 0,
            "purchased_credits": 0,
            "bonus_credits": 0,
            "version": 0,
        }
        if self.dialect_name == "postgresql":
            stmt = postgresql.insert(Wallet).values(**values).on_conflict_do_nothing(
                index_elements=[Wallet.user_id]
            )
        elif self.dialect_name == "sqlite":
            stmt = sqlite.insert(Wallet).values(**values).on_conflict_do_nothing(
                index_elements=[Wallet.user_id]
            )
        else:
            try:
                async with self.session.begin_nested():
                    self.session.add(Wallet(**values))
            except IntegrityError:
                logger.debug("Wallet for %s created concurrently", user_id)
            return
        await self.session.execute(stmt)

    @staticmethod
    def _to_snapshot(row: Any) -> WalletSnapshot:
        return WalletSnapshot(
            user_id=row.user_id,
            balance=row.balance,
            purchased_credits=row.purchased_credits,
            bonus_credits=row.bonus_credits,
            expires_at=row.expires_at,
            version=row.version,
            updated_at=row.updated_at,
        )
