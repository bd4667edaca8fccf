"""Package catalogue and purchase fulfilment."""

import pytest

from credit_ledger.domain.ledger import ValidationError
from credit_ledger.domain.packages import CREDIT_PACKAGES, PurchaseFulfilmentService, get_credit_package
from credit_ledger.domain.wallets import TransactionType


def test_catalogue_matches_price_list():
    assert [pkg.id for pkg in CREDIT_PACKAGES] == ["starter", "pro", "enterprise"]
    pro = get_credit_package("pro")
    assert (pro.credits, pro.bonus_credits, pro.price_cents) == (500, 50, 3999)
    assert pro.price_display == "$39.99"
    assert get_credit_package("platinum") is None


@pytest.mark.asyncio
async def test_fulfil_grants_purchase_and_bonus(ledger):
    service = PurchaseFulfilmentService(ledger)

    result = await service.fulfil(user_id="u1", package_id="enterprise", reference_id="cs_1", amount_paid_cents=14999)

    assert result.purchase.type is TransactionType.PURCHASE
    assert result.purchase.amount == 2000
    assert result.bonus.type is TransactionType.BONUS
    assert result.bonus.amount == 500
    wallet = await ledger.wallets.get("u1")
    assert (wallet.balance, wallet.purchased_credits, wallet.bonus_credits) == (2500, 2000, 500)


@pytest.mark.asyncio
async def test_duplicate_confirmation_credits_once(ledger):
    service = PurchaseFulfilmentService(ledger)

    first = await service.fulfil(user_id="u1", package_id="pro", reference_id="cs_2")
    second = await service.fulfil(user_id="u1", package_id="pro", reference_id="cs_2")

    assert first.purchase.id == second.purchase.id
    assert first.bonus.id == second.bonus.id
    assert (await ledger.wallets.get("u1")).balance == 550
    assert len(await ledger.history("u1")) == 2


@pytest.mark.asyncio
async def test_starter_has_no_bonus(ledger):
    result = await PurchaseFulfilmentService(ledger).fulfil(user_id="u1", package_id="starter", reference_id="cs_3")

    assert result.bonus is None
    assert (await ledger.wallets.get("u1")).balance == 100


@pytest.mark.asyncio
async def test_unknown_package_is_rejected(ledger):
    with pytest.raises(ValidationError):
        await PurchaseFulfilmentService(ledger).fulfil(user_id="u1", package_id="platinum", reference_id="cs_4")
