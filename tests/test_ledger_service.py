"""
Credit ledger service tests

Covers:
- Combined balance with meter degradation
- Eligibility classification
- Wallet-first deduction and subscription fallback
- Compensation when the subscription debit fails or is cancelled
- Idempotent grants, refunds, history paging and audit replay
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from credit_ledger.domain.ledger import (
    BalanceSource,
    CreditLedgerService,
    ExternalServiceError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from credit_ledger.domain.metering import AllowanceExceededError, MeterUnavailableError
from credit_ledger.domain.wallets import TransactionRecord, TransactionSource, TransactionType
from credit_ledger.infrastructure.database.repositories import SqlTransactionLog, SqlWalletRepository

from .conftest import FakeMeter


class StaleLookupTransactionLog(SqlTransactionLog):
    """Misses one idempotency lookup, as a writer does when another commits in between."""

    def __init__(self, session) -> None:
        super().__init__(session)
        self.stale = False

    async def find_by_idempotency_key(self, key):
        if self.stale:
            self.stale = False
            return None
        return await super().find_by_idempotency_key(key)


class TestGetBalance:
    @pytest.mark.asyncio
    async def test_missing_wallet_reads_as_zero_without_creating_it(self, ledger, meter):
        meter.balance = 15

        balance = await ledger.get_balance("u1")

        assert (balance.wallet, balance.subscription, balance.total) == (0, 15, 15)
        assert await ledger.wallets.get("u1") is None

    @pytest.mark.asyncio
    async def test_meter_outage_degrades_to_wallet_only(self, ledger, meter):
        await ledger.grant("u1", 50, "purchase", "seed")
        meter.available = False

        balance = await ledger.get_balance("u1")

        assert balance.wallet == 50
        assert balance.subscription == 0
        assert balance.total == 50

    @pytest.mark.asyncio
    async def test_negative_allowance_is_clamped(self, ledger, meter):
        await ledger.grant("u1", 5, "purchase", "seed")
        meter.balance = -20

        balance = await ledger.get_balance("u1")

        assert balance.total == 5


class TestCheckEligibility:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "wallet, subscription, required, has_enough, source",
        [
            (50, 0, 30, True, BalanceSource.WALLET),
            (10, 40, 30, True, BalanceSource.SUBSCRIPTION),
            (20, 20, 30, True, BalanceSource.BOTH),
            (20, 20, 100, False, BalanceSource.NONE),
        ],
    )
    async def test_source_classification(self, ledger, meter, wallet, subscription, required, has_enough, source):
        await ledger.grant("u1", wallet, "purchase", "seed")
        meter.balance = subscription

        result = await ledger.check_eligibility("u1", required)

        assert result.has_enough is has_enough
        assert result.source is source
        assert result.balance.total == wallet + subscription

    @pytest.mark.asyncio
    async def test_rejects_non_positive_requirement(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.check_eligibility("u1", 0)


class TestDeduct:
    @pytest.mark.asyncio
    async def test_grant_then_deduct_round_trip(self, ledger):
        await ledger.grant("u1", 100, TransactionType.PURCHASE, "Purchased 100 credits")

        result = await ledger.deduct("u1", 40, "chat message")

        assert (result.wallet_deducted, result.subscription_deducted) == (40, 0)
        assert (await ledger.get_balance("u1")).wallet == 60
        history = await ledger.history("u1")
        assert [tx.type for tx in history] == [TransactionType.USAGE, TransactionType.PURCHASE]
        assert sum(tx.amount for tx in history) == 60

    @pytest.mark.asyncio
    async def test_wallet_then_subscription(self, ledger, meter):
        await ledger.grant("u1", 30, "purchase", "seed")
        meter.balance = 25

        result = await ledger.deduct("u1", 50, "test", reference_id="act-1", metadata={"page": "chat"})

        assert result.wallet_deducted == 30
        assert result.subscription_deducted == 20
        assert (await ledger.wallets.get("u1")).balance == 0
        assert meter.debits == [("u1", "messages", 20)]

        subscription_tx, wallet_tx, _ = await ledger.history("u1")
        assert wallet_tx.amount == -30
        assert wallet_tx.source is TransactionSource.WALLET
        assert subscription_tx.amount == -20
        assert subscription_tx.source is TransactionSource.SUBSCRIPTION
        assert subscription_tx.description == "test (subscription)"
        assert subscription_tx.metadata == {"page": "chat", "source": "subscription"}
        assert subscription_tx.reference_id == "act-1"

    @pytest.mark.asyncio
    async def test_subscription_only_when_wallet_empty(self, ledger, meter):
        meter.balance = 10

        result = await ledger.deduct("u1", 4, "test")

        assert (result.wallet_deducted, result.subscription_deducted) == (0, 4)
        history = await ledger.history("u1")
        assert len(history) == 1
        assert history[0].source is TransactionSource.SUBSCRIPTION

    @pytest.mark.asyncio
    async def test_empty_wallet_and_offline_meter_is_insufficient(self, ledger, meter):
        meter.available = False

        with pytest.raises(InsufficientCreditsError) as excinfo:
            await ledger.deduct("u1", 10, "test")

        assert excinfo.value.required == 10
        assert excinfo.value.available == 0
        assert excinfo.value.shortfall == 10
        assert (await ledger.wallets.get("u1")).balance == 0
        assert await ledger.history("u1") == []

    @pytest.mark.asyncio
    async def test_short_combined_balance_touches_nothing(self, ledger, meter):
        await ledger.grant("u1", 5, "purchase", "seed")
        meter.balance = 3

        with pytest.raises(InsufficientCreditsError) as excinfo:
            await ledger.deduct("u1", 10, "test")

        assert excinfo.value.shortfall == 2
        assert (await ledger.wallets.get("u1")).balance == 5
        assert meter.debits == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, True, 2.5, "10"])
    async def test_rejects_invalid_amount(self, ledger, amount):
        with pytest.raises(ValidationError):
            await ledger.deduct("u1", amount, "test")

    @pytest.mark.asyncio
    async def test_rejects_blank_description(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.deduct("u1", 1, "   ")


class TestCompensation:
    @pytest.mark.asyncio
    async def test_meter_outage_during_debit_restores_wallet(self, ledger, meter):
        await ledger.grant("u1", 30, "purchase", "seed")
        meter.balance = 100
        meter.debit_error = MeterUnavailableError("timeout")

        with pytest.raises(ExternalServiceError):
            await ledger.deduct("u1", 50, "test")

        assert (await ledger.wallets.get("u1")).balance == 30
        history = await ledger.history("u1")
        assert [tx.type for tx in history] == [TransactionType.PURCHASE]
        assert (await ledger.audit("u1")).consistent

    @pytest.mark.asyncio
    async def test_refused_debit_surfaces_as_insufficient(self, ledger, meter):
        await ledger.grant("u1", 30, "purchase", "seed")
        meter.balance = 100
        meter.debit_error = AllowanceExceededError("allowance exhausted")

        with pytest.raises(InsufficientCreditsError):
            await ledger.deduct("u1", 50, "test")

        assert (await ledger.wallets.get("u1")).balance == 30
        assert all(tx.type is not TransactionType.USAGE for tx in await ledger.history("u1"))

    @pytest.mark.asyncio
    async def test_cancelled_debit_still_restores_wallet(self, ledger, meter):
        await ledger.grant("u1", 30, "purchase", "seed")
        meter.balance = 100
        meter.block_debit = True

        task = asyncio.create_task(ledger.deduct("u1", 50, "test"))
        await asyncio.wait_for(meter.debit_started.wait(), timeout=5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert (await ledger.wallets.get("u1")).balance == 30
        assert [tx.type for tx in await ledger.history("u1")] == [TransactionType.PURCHASE]


class TestGrant:
    @pytest.mark.asyncio
    async def test_replayed_reference_credits_once(self, ledger):
        first = await ledger.grant("u1", 100, "purchase", "Purchased 100 credits", reference_id="cs_123")
        second = await ledger.grant("u1", 100, "purchase", "Purchased 100 credits", reference_id="cs_123")

        assert first.id == second.id
        wallet = await ledger.wallets.get("u1")
        assert wallet.balance == 100
        assert wallet.purchased_credits == 100
        assert len(await ledger.history("u1")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_deliveries_credit_once(self, session_factory):
        async def deliver():
            async with session_factory() as session:
                ledger = CreditLedgerService(SqlWalletRepository(session), SqlTransactionLog(session), FakeMeter())
                record = await ledger.grant("u1", 100, "purchase", "Purchased 100 credits", reference_id="cs_dup")
                await session.commit()
                return record

        first, second = await asyncio.gather(deliver(), deliver())

        assert isinstance(first, TransactionRecord)
        assert isinstance(second, TransactionRecord)
        assert first.id == second.id
        async with session_factory() as session:
            wallet = await SqlWalletRepository(session).get("u1")
        assert (wallet.balance, wallet.purchased_credits) == (100, 100)

    @pytest.mark.asyncio
    async def test_lost_key_race_keeps_earlier_grants_in_the_same_unit(self, session_factory):
        async with session_factory() as session:
            ledger = CreditLedgerService(SqlWalletRepository(session), SqlTransactionLog(session), FakeMeter())
            winner = await ledger.grant("u1", 500, "purchase", "Purchased", reference_id="cs_race")
            await session.commit()

        async with session_factory() as session:
            log = StaleLookupTransactionLog(session)
            ledger = CreditLedgerService(SqlWalletRepository(session), log, FakeMeter())
            sibling = await ledger.grant("u1", 50, "bonus", "Bonus", reference_id="cs_race")
            log.stale = True
            replay = await ledger.grant("u1", 500, "purchase", "Purchased", reference_id="cs_race")
            await session.commit()

        assert replay.id == winner.id
        assert log.stale is False
        async with session_factory() as session:
            wallet = await SqlWalletRepository(session).get("u1")
            entries = await SqlTransactionLog(session).history("u1", 10, 0)
        assert (wallet.balance, wallet.purchased_credits, wallet.bonus_credits) == (550, 500, 50)
        assert [tx.id for tx in entries] == [sibling.id, winner.id]

    @pytest.mark.asyncio
    async def test_same_reference_different_kind_is_separate(self, ledger):
        await ledger.grant("u1", 500, "purchase", "Purchased", reference_id="cs_9")
        await ledger.grant("u1", 50, "bonus", "Bonus", reference_id="cs_9")

        wallet = await ledger.wallets.get("u1")
        assert wallet.balance == 550
        assert (wallet.purchased_credits, wallet.bonus_credits) == (500, 50)

    @pytest.mark.asyncio
    async def test_bonus_expiry_is_last_write_wins(self, ledger):
        first_expiry = datetime(2027, 1, 1, tzinfo=timezone.utc)
        second_expiry = first_expiry + timedelta(days=30)

        await ledger.grant("u1", 10, "bonus", "welcome", expires_at=first_expiry)
        await ledger.grant("u1", 10, "bonus", "promo", expires_at=second_expiry)

        wallet = await ledger.wallets.get("u1")
        assert wallet.expires_at.replace(tzinfo=timezone.utc) == second_expiry
        assert wallet.bonus_credits == 20

    @pytest.mark.asyncio
    async def test_purchase_ignores_expiry(self, ledger):
        await ledger.grant("u1", 10, "purchase", "seed", expires_at=datetime(2027, 1, 1, tzinfo=timezone.utc))

        assert (await ledger.wallets.get("u1")).expires_at is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", ["usage", "refund", "gift"])
    async def test_rejects_non_grant_kind(self, ledger, kind):
        with pytest.raises(ValidationError):
            await ledger.grant("u1", 10, kind, "seed")


class TestRefund:
    @pytest.mark.asyncio
    async def test_refund_without_wallet_fails(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.refund("ghost", 5, "refund")

        assert await ledger.wallets.get("ghost") is None

    @pytest.mark.asyncio
    async def test_refund_credits_wallet(self, ledger):
        await ledger.grant("u1", 20, "purchase", "seed")
        await ledger.deduct("u1", 20, "analysis", reference_id="job-1")

        record = await ledger.refund("u1", 20, "analysis failed", reference_id="job-1")

        assert record.type is TransactionType.REFUND
        assert record.amount == 20
        assert (await ledger.wallets.get("u1")).balance == 20


class TestHistoryAndAudit:
    @pytest.mark.asyncio
    async def test_history_is_newest_first_and_pages_by_offset(self, ledger):
        for amount in (1, 2, 3, 4):
            await ledger.grant("u1", amount, "purchase", f"grant {amount}")

        first_page = await ledger.history("u1", limit=2, offset=0)
        second_page = await ledger.history("u1", limit=2, offset=2)

        assert [tx.amount for tx in first_page] == [4, 3]
        assert [tx.amount for tx in second_page] == [2, 1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit, offset", [(0, 0), (201, 0), (10, -1)])
    async def test_history_rejects_bad_paging(self, ledger, limit, offset):
        with pytest.raises(ValidationError):
            await ledger.history("u1", limit=limit, offset=offset)

    @pytest.mark.asyncio
    async def test_lifetime_counters_do_not_move_on_usage(self, ledger, meter):
        meter.balance = 10
        await ledger.grant("u1", 100, "purchase", "seed")
        await ledger.grant("u1", 20, "bonus", "bonus")
        await ledger.deduct("u1", 125, "big job")

        wallet = await ledger.wallets.get("u1")
        report = await ledger.audit("u1")

        assert wallet.balance == 0
        assert (wallet.purchased_credits, wallet.bonus_credits) == (100, 20)
        assert report.ledger_wallet_total == 0
        assert report.ledger_granted_total == 120
        assert report.consistent
