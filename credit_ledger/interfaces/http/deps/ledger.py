"""Credit ledger dependency providers."""

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.domain.ledger import CreditLedgerService
from credit_ledger.domain.metering import SubscriptionMeter
from credit_ledger.domain.packages import PurchaseFulfilmentService

from .database import get_db_session


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Session resolution happens upstream; the gateway forwards the user id."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Please log in to use credits")
    return x_user_id


def get_subscription_meter(request: Request) -> SubscriptionMeter:
    return request.app.state.subscription_meter


def get_ledger_service(
    db: AsyncSession = Depends(get_db_session),
    meter: SubscriptionMeter = Depends(get_subscription_meter),
) -> CreditLedgerService:
    return CreditLedgerService.with_session(db, meter)


def get_fulfilment_service(
    ledger: CreditLedgerService = Depends(get_ledger_service),
) -> PurchaseFulfilmentService:
    return PurchaseFulfilmentService(ledger)


__all__ = [
    "get_current_user_id",
    "get_fulfilment_service",
    "get_ledger_service",
    "get_subscription_meter",
]
