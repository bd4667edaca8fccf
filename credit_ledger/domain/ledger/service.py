"""
Credit ledger service

Composes the wallet store, the transaction log and the subscription meter:
- Combined balance queries (meter failures degrade to a zero allowance)
- Eligibility checks
- Wallet-first deductions with compensation on subscription failure
- Idempotent credit grants and refunds

Wallet writes are conditional on the version observed at read time, so two
concurrent deductions can never both spend the same credits. Usage entries
are appended only after the whole deduction has succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.config import Settings, get_settings
from credit_ledger.domain.exceptions import (
    ConcurrencyError,
    CreditLedgerError,
    ExternalServiceError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from credit_ledger.domain.metering import (
    AllowanceExceededError,
    SubscriptionMeter,
    SubscriptionMeterError,
)
from credit_ledger.domain.wallets import (
    NewTransaction,
    TransactionLog,
    TransactionRecord,
    TransactionSource,
    TransactionType,
    WalletRepository,
    WalletSnapshot,
)
from credit_ledger.infrastructure.database.repositories import SqlTransactionLog, SqlWalletRepository

from .models import AuditReport, CombinedBalance, DeductionResult, EligibilityResult, classify_source

logger = logging.getLogger(__name__)

_GRANT_KINDS = (TransactionType.PURCHASE, TransactionType.BONUS)


@dataclass(slots=True)
class CreditLedgerService:
    wallets: WalletRepository
    transactions: TransactionLog
    meter: SubscriptionMeter
    feature_id: str = "messages"
    max_write_attempts: int = 5
    history_max_limit: int = 200

    @classmethod
    def with_session(
        cls,
        session: AsyncSession,
        meter: SubscriptionMeter,
        settings: Optional[Settings] = None,
    ) -> "CreditLedgerService":
        settings = settings or get_settings()
        return cls(
            SqlWalletRepository(session),
            SqlTransactionLog(session),
            meter,
            feature_id=settings.metering.feature_id,
            max_write_attempts=settings.ledger.max_write_attempts,
            history_max_limit=settings.ledger.history_max_limit,
        )

    async def get_balance(self, user_id: str) -> CombinedBalance:
        """Wallet plus subscription allowance. Never creates a wallet."""
        wallet = await self.wallets.get(user_id)
        wallet_balance = wallet.balance if wallet else 0
        subscription = await self._subscription_balance(user_id)
        return CombinedBalance(
            wallet=wallet_balance,
            subscription=subscription,
            total=wallet_balance + subscription,
        )

    async def check_eligibility(self, user_id: str, required_amount: int) -> EligibilityResult:
        """Advisory only: nothing is reserved."""
        _require_positive(required_amount, "required_amount")
        balance = await self.get_balance(user_id)
        return EligibilityResult(
            has_enough=balance.total >= required_amount,
            balance=balance,
            source=classify_source(balance, required_amount),
        )

    async def deduct(
        self,
        user_id: str,
        amount: int,
        description: str,
        reference_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> DeductionResult:
        """
        Deduct ``amount`` credits, wallet first, subscription for the rest.

        If the subscription debit fails, the wallet share is credited back
        before the error is raised, and no usage entry is written. The
        compensation also runs when the call is cancelled mid-debit.

        Raises:
            ValidationError: non-positive amount or empty description
            InsufficientCreditsError: combined balance short, or meter refused
            ExternalServiceError: meter unavailable during the debit
            ConcurrencyError: wallet kept changing under us
        """
        _require_positive(amount, "amount")
        _require_text(description, "description")
        metadata = dict(metadata or {})

        wallet_part = await self._take_from_wallet(user_id, amount)
        remaining = amount - wallet_part

        if remaining > 0:
            try:
                await self.meter.debit(user_id, self.feature_id, remaining)
            except asyncio.CancelledError:
                await self._compensate_through_cancellation(user_id, wallet_part, reference_id)
                raise
            except AllowanceExceededError as exc:
                await self._compensate(user_id, wallet_part, reference_id)
                logger.info("Subscription refused %s credits for %s", remaining, user_id)
                raise InsufficientCreditsError(required=amount, available=wallet_part) from exc
            except SubscriptionMeterError as exc:
                await self._compensate(user_id, wallet_part, reference_id)
                raise ExternalServiceError(f"Subscription debit failed for {user_id}") from exc

        if wallet_part > 0:
            await self.transactions.append(
                NewTransaction(
                    user_id=user_id,
                    type=TransactionType.USAGE,
                    amount=-wallet_part,
                    description=description,
                    reference_id=reference_id,
                    metadata=metadata,
                )
            )
        if remaining > 0:
            await self.transactions.append(
                NewTransaction(
                    user_id=user_id,
                    type=TransactionType.USAGE,
                    amount=-remaining,
                    description=f"{description} (subscription)",
                    source=TransactionSource.SUBSCRIPTION,
                    reference_id=reference_id,
                    metadata={**metadata, "source": TransactionSource.SUBSCRIPTION.value},
                )
            )

        logger.info(
            "Deducted %s credits from %s (wallet=%s, subscription=%s)",
            amount,
            user_id,
            wallet_part,
            remaining,
        )
        return DeductionResult(wallet_deducted=wallet_part, subscription_deducted=remaining)

    async def grant(
        self,
        user_id: str,
        amount: int,
        kind: TransactionType | str,
        description: str,
        reference_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
    ) -> TransactionRecord:
        """
        Add purchased or bonus credits to the wallet.

        A replay with the same ``reference_id``, kind and amount returns the
        original entry and leaves the balance alone, including when the two
        deliveries race. ``expires_at`` applies to bonus grants only and
        replaces any earlier expiry.
        """
        _require_positive(amount, "amount")
        _require_text(description, "description")
        kind = _grant_kind(kind)

        entry = NewTransaction(
            user_id=user_id,
            type=kind,
            amount=amount,
            description=description,
            reference_id=reference_id,
            metadata=dict(metadata or {}),
            idempotency_key=f"{user_id}:{kind.value}:{reference_id}:{amount}" if reference_id else None,
        )
        is_bonus = kind is TransactionType.BONUS
        credit = dict(
            create=True,
            purchased_delta=0 if is_bonus else amount,
            bonus_delta=amount if is_bonus else 0,
            expires_at=expires_at if is_bonus else None,
        )

        if entry.idempotency_key is None:
            await self._credit_wallet(user_id, amount, **credit)
            record = await self.transactions.append(entry)
        else:
            # The keyed entry goes in first so a duplicate never reaches the wallet.
            await self.wallets.get_or_create(user_id)
            record, created = await self.transactions.append_once(entry)
            if not created:
                logger.info("Grant %s for %s already applied, skipping", reference_id, user_id)
                return record
            await self._credit_wallet(user_id, amount, **credit)

        logger.info("Granted %s %s credits to %s", amount, kind.value, user_id)
        return record

    async def refund(
        self,
        user_id: str,
        amount: int,
        description: str,
        reference_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> TransactionRecord:
        _require_positive(amount, "amount")
        _require_text(description, "description")

        await self._credit_wallet(user_id, amount, create=False)
        record = await self.transactions.append(
            NewTransaction(
                user_id=user_id,
                type=TransactionType.REFUND,
                amount=amount,
                description=description,
                reference_id=reference_id,
                metadata=dict(metadata or {}),
            )
        )
        logger.info("Refunded %s credits to %s", amount, user_id)
        return record

    async def history(self, user_id: str, limit: int = 50, offset: int = 0) -> list[TransactionRecord]:
        if limit < 1 or limit > self.history_max_limit:
            raise ValidationError(f"limit must be between 1 and {self.history_max_limit}")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        return list(await self.transactions.history(user_id, limit, offset))

    async def audit(self, user_id: str) -> AuditReport:
        wallet = await self.wallets.get(user_id)
        if wallet is None:
            raise NotFoundError(f"No wallet for user {user_id}")
        return AuditReport(
            user_id=user_id,
            wallet_balance=wallet.balance,
            ledger_wallet_total=await self.transactions.wallet_total(user_id),
            lifetime_granted=wallet.purchased_credits + wallet.bonus_credits,
            ledger_granted_total=await self.transactions.granted_total(user_id),
        )

    async def _subscription_balance(self, user_id: str) -> int:
        try:
            remaining = await self.meter.check_balance(user_id, self.feature_id)
        except SubscriptionMeterError as exc:
            logger.warning("Subscription balance unavailable for %s, using 0: %s", user_id, exc)
            return 0
        return max(remaining, 0)

    async def _take_from_wallet(self, user_id: str, amount: int) -> int:
        """Debit the wallet share of ``amount`` and return it."""
        for attempt in range(1, self.max_write_attempts + 1):
            wallet = await self.wallets.get_or_create(user_id)
            wallet_part = min(wallet.balance, amount)
            if wallet_part < amount:
                available = wallet.balance + await self._subscription_balance(user_id)
                if available < amount:
                    logger.info(
                        "Insufficient credits for %s: required %s, available %s",
                        user_id,
                        amount,
                        available,
                    )
                    raise InsufficientCreditsError(required=amount, available=available)
            if wallet_part == 0:
                return 0
            try:
                await self.wallets.apply_delta(wallet, -wallet_part)
            except ConcurrencyError:
                logger.info(
                    "Wallet %s changed concurrently, retrying (%s/%s)",
                    user_id,
                    attempt,
                    self.max_write_attempts,
                )
                continue
            return wallet_part
        raise ConcurrencyError(f"Could not debit wallet {user_id} after {self.max_write_attempts} attempts")

    async def _credit_wallet(
        self,
        user_id: str,
        amount: int,
        *,
        create: bool,
        purchased_delta: int = 0,
        bonus_delta: int = 0,
        expires_at: Optional[datetime] = None,
    ) -> WalletSnapshot:
        for attempt in range(1, self.max_write_attempts + 1):
            if create:
                wallet = await self.wallets.get_or_create(user_id)
            else:
                wallet = await self.wallets.get(user_id)
                if wallet is None:
                    raise NotFoundError(f"No wallet for user {user_id}")
            try:
                return await self.wallets.apply_delta(
                    wallet,
                    amount,
                    purchased_delta=purchased_delta,
                    bonus_delta=bonus_delta,
                    expires_at=expires_at,
                )
            except ConcurrencyError:
                logger.info(
                    "Wallet %s changed concurrently, retrying (%s/%s)",
                    user_id,
                    attempt,
                    self.max_write_attempts,
                )
        raise ConcurrencyError(f"Could not credit wallet {user_id} after {self.max_write_attempts} attempts")

    async def _compensate_through_cancellation(
        self,
        user_id: str,
        wallet_part: int,
        reference_id: Optional[str],
    ) -> None:
        """Run the compensation to completion even if cancelled again meanwhile.

        The caller does not return until the restore has finished, so the
        session is never released while the compensation still uses it.
        """
        task = asyncio.ensure_future(self._compensate(user_id, wallet_part, reference_id))
        while not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.done():
                    logger.warning("Cancelled again while restoring wallet %s, finishing restore first", user_id)
        task.result()

    async def _compensate(self, user_id: str, wallet_part: int, reference_id: Optional[str]) -> None:
        if wallet_part == 0:
            return
        logger.warning(
            "Restoring %s wallet credits for %s after failed subscription debit (ref=%s)",
            wallet_part,
            user_id,
            reference_id,
        )
        try:
            await self._credit_wallet(user_id, wallet_part, create=False)
        except CreditLedgerError:
            logger.exception("Compensation failed for %s, wallet is short by %s", user_id, wallet_part)
            raise


def _require_positive(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer")


def _require_text(value: Any, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")


def _grant_kind(kind: TransactionType | str) -> TransactionType:
    try:
        kind = TransactionType(kind)
    except ValueError as exc:
        raise ValidationError(f"unknown grant kind {kind!r}") from exc
    if kind not in _GRANT_KINDS:
        raise ValidationError("grant kind must be purchase or bonus")
    return kind
