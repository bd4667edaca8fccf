"""SQLAlchemy implementation of the append-only transaction log."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import desc, func, select
from sqlalchemy.exc import IntegrityError

from credit_ledger.db.models import CreditTransaction, utcnow
from credit_ledger.domain.common import AsyncRepository
from credit_ledger.domain.wallets.models import (
    NewTransaction,
    TransactionRecord,
    TransactionSource,
    TransactionType,
)

_GRANT_TYPES = (TransactionType.PURCHASE.value, TransactionType.BONUS.value)


class SqlTransactionLog(AsyncRepository[CreditTransaction]):
    async def append(self, entry: NewTransaction) -> TransactionRecord:
        tx = await self.add(self._to_model(entry))
        return self._to_record(tx)

    async def append_once(self, entry: NewTransaction) -> tuple[TransactionRecord, bool]:
        """Append an entry carrying an idempotency key unless one already exists.

        Returns the stored record and whether this call created it. A writer
        that loses the race on the unique key only rolls back its savepoint,
        so earlier work in the same unit of work survives.
        """
        if not entry.idempotency_key:
            raise ValueError("append_once requires an idempotency key")
        existing = await self.find_by_idempotency_key(entry.idempotency_key)
        if existing is not None:
            return existing, False

        tx = self._to_model(entry)
        try:
            async with self.session.begin_nested():
                self.session.add(tx)
                await self.session.flush()
        except IntegrityError:
            existing = await self.find_by_idempotency_key(entry.idempotency_key)
            if existing is None:
                raise
            return existing, False
        return self._to_record(tx), True

    async def history(self, user_id: str, limit: int, offset: int) -> Sequence[TransactionRecord]:
        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(desc(CreditTransaction.id))
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._to_record(row) for row in result.scalars().all()]

    async def find_by_idempotency_key(self, key: str) -> TransactionRecord | None:
        stmt = select(CreditTransaction).where(CreditTransaction.idempotency_key == key)
        result = await self.session.execute(stmt)
        tx = result.scalars().first()
        return self._to_record(tx) if tx else None

    async def wallet_total(self, user_id: str) -> int:
        stmt = select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.source == TransactionSource.WALLET.value,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def granted_total(self, user_id: str) -> int:
        stmt = select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.type.in_(_GRANT_TYPES),
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    def _to_model(entry: NewTransaction) -> CreditTransaction:
        return CreditTransaction(
            user_id=entry.user_id,
            type=entry.type.value,
            amount=entry.amount,
            source=entry.source.value,
            description=entry.description,
            reference_id=entry.reference_id,
            meta=dict(entry.metadata),
            idempotency_key=entry.idempotency_key,
            created_at=utcnow(),
        )

    @staticmethod
    def _to_record(model: CreditTransaction) -> TransactionRecord:
        return TransactionRecord(
            id=model.id,
            user_id=model.user_id,
            type=TransactionType(model.type),
            amount=model.amount,
            source=TransactionSource(model.source),
            description=model.description,
            reference_id=model.reference_id,
            metadata=dict(model.meta or {}),
            created_at=model.created_at,
        )
