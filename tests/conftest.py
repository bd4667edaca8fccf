"""Shared fixtures: a file-backed SQLite database per test and a fake meter."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from credit_ledger.db import models  # noqa: F401
from credit_ledger.domain.ledger import CreditLedgerService
from credit_ledger.domain.metering import AllowanceExceededError, MeterUnavailableError
from credit_ledger.infrastructure.database.base import Base
from credit_ledger.infrastructure.database.repositories import SqlTransactionLog, SqlWalletRepository


class FakeMeter:
    """Scriptable stand-in for the subscription metering service."""

    def __init__(self, balance: int = 0) -> None:
        self.balance = balance
        self.available = True
        self.debit_error: Optional[Exception] = None
        self.debits: list[tuple[str, str, int]] = []
        self.debit_started = asyncio.Event()
        self.block_debit = False

    async def check_balance(self, user_id: str, feature_id: str) -> int:
        if not self.available:
            raise MeterUnavailableError("meter offline")
        return self.balance

    async def debit(self, user_id: str, feature_id: str, amount: int) -> None:
        self.debit_started.set()
        if self.block_debit:
            await asyncio.Event().wait()
        if not self.available:
            raise MeterUnavailableError("meter offline")
        if self.debit_error is not None:
            raise self.debit_error
        if amount > self.balance:
            raise AllowanceExceededError("allowance exhausted")
        self.balance -= amount
        self.debits.append((user_id, feature_id, amount))


@pytest.fixture
async def engine(tmp_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def meter() -> FakeMeter:
    return FakeMeter()


@pytest.fixture
def ledger(session, meter) -> CreditLedgerService:
    return CreditLedgerService(SqlWalletRepository(session), SqlTransactionLog(session), meter)
