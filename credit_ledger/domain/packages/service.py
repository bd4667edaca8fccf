"""Turns confirmed package payments into wallet grants."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from credit_ledger.domain.exceptions import ValidationError
from credit_ledger.domain.ledger import CreditLedgerService
from credit_ledger.domain.wallets import TransactionRecord, TransactionType

from .catalog import get_credit_package

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FulfilmentResult:
    package_id: str
    purchase: TransactionRecord
    bonus: Optional[TransactionRecord] = None


@dataclass(slots=True)
class PurchaseFulfilmentService:
    ledger: CreditLedgerService

    async def fulfil(
        self,
        *,
        user_id: str,
        package_id: str,
        reference_id: str,
        amount_paid_cents: Optional[int] = None,
    ) -> FulfilmentResult:
        """Grant a package's credits, keyed on the payment reference.

        Payment confirmations can arrive more than once (webhook and
        redirect); replays resolve to the original ledger entries.
        """
        package = get_credit_package(package_id)
        if package is None:
            raise ValidationError(f"unknown credit package {package_id!r}")
        if not reference_id:
            raise ValidationError("reference_id is required")

        purchase = await self.ledger.grant(
            user_id,
            package.credits,
            TransactionType.PURCHASE,
            f"Purchased {package.credits} credits via {package.id} package",
            reference_id=reference_id,
            metadata={"package_id": package.id, "amount_paid_cents": amount_paid_cents},
        )
        bonus = None
        if package.bonus_credits > 0:
            bonus = await self.ledger.grant(
                user_id,
                package.bonus_credits,
                TransactionType.BONUS,
                f"Bonus credits from {package.id} package",
                reference_id=reference_id,
                metadata={"package_id": package.id, "source": "purchase_bonus"},
            )
        logger.info("Fulfilled %s package for %s (ref=%s)", package.id, user_id, reference_id)
        return FulfilmentResult(package_id=package.id, purchase=purchase, bonus=bonus)
