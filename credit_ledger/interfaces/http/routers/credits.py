"""Credit balance, usage and purchase endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from credit_ledger.domain.ledger import (
    CombinedBalance,
    ConcurrencyError,
    CreditLedgerError,
    CreditLedgerService,
    ExternalServiceError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from credit_ledger.domain.packages import CREDIT_PACKAGES, PurchaseFulfilmentService
from credit_ledger.domain.wallets import TransactionRecord
from credit_ledger.interfaces.http.deps import (
    get_current_user_id,
    get_fulfilment_service,
    get_ledger_service,
)
from credit_ledger.schemas import (
    CombinedBalanceResponse,
    CreditPackageResponse,
    CreditSummaryResponse,
    DeductRequest,
    DeductResponse,
    EligibilityRequest,
    EligibilityResponse,
    FulfilPurchaseRequest,
    FulfilPurchaseResponse,
    RefundRequest,
    TransactionListResponse,
    TransactionResponse,
)

router = APIRouter()


def _to_http_error(exc: CreditLedgerError) -> HTTPException:
    if isinstance(exc, InsufficientCreditsError):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "Not enough credits",
                "required": exc.required,
                "available": exc.available,
                "shortfall": exc.shortfall,
            },
        )
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConcurrencyError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Balance changed, please retry")
    if isinstance(exc, ExternalServiceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Subscription service unavailable")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Credit operation failed")


def _balance_response(balance: CombinedBalance) -> CombinedBalanceResponse:
    return CombinedBalanceResponse(
        wallet_balance=balance.wallet,
        subscription_balance=balance.subscription,
        total_balance=balance.total,
    )


def _transaction_response(record: TransactionRecord) -> TransactionResponse:
    return TransactionResponse(
        id=record.id,
        type=record.type.value,
        amount=record.amount,
        source=record.source.value,
        description=record.description,
        reference_id=record.reference_id,
        metadata=record.metadata,
        created_at=record.created_at,
    )


@router.get("", response_model=CreditSummaryResponse, summary="Combined credit summary")
async def get_credit_summary(
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedgerService = Depends(get_ledger_service),
) -> CreditSummaryResponse:
    balance = await ledger.get_balance(user_id)
    return CreditSummaryResponse(
        allowed=balance.total > 0,
        balance=balance.total,
        wallet_balance=balance.wallet,
        subscription_balance=balance.subscription,
    )


@router.get("/wallet", response_model=CombinedBalanceResponse, summary="Wallet and subscription balance")
async def get_wallet_balance(
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedgerService = Depends(get_ledger_service),
) -> CombinedBalanceResponse:
    return _balance_response(await ledger.get_balance(user_id))


@router.get("/transactions", response_model=TransactionListResponse, summary="Transaction history")
async def list_transactions(
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedgerService = Depends(get_ledger_service),
) -> TransactionListResponse:
    try:
        records = await ledger.history(user_id, limit, offset)
    except CreditLedgerError as exc:
        raise _to_http_error(exc) from exc
    return TransactionListResponse(transactions=[_transaction_response(r) for r in records])


@router.post("/check", response_model=EligibilityResponse, summary="Check whether credits suffice")
async def check_credits(
    payload: EligibilityRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedgerService = Depends(get_ledger_service),
) -> EligibilityResponse:
    result = await ledger.check_eligibility(user_id, payload.required_credits)
    return EligibilityResponse(
        has_enough=result.has_enough,
        source=result.source.value,
        balance=_balance_response(result.balance),
    )


@router.post("/deduct", response_model=DeductResponse, summary="Deduct credits, wallet first")
async def deduct_credits(
    payload: DeductRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedgerService = Depends(get_ledger_service),
) -> DeductResponse:
    try:
        result = await ledger.deduct(
            user_id,
            payload.amount,
            payload.description,
            reference_id=payload.reference_id,
            metadata=payload.metadata,
        )
    except CreditLedgerError as exc:
        raise _to_http_error(exc) from exc
    return DeductResponse(
        wallet_deducted=result.wallet_deducted,
        subscription_deducted=result.subscription_deducted,
    )


@router.post(
    "/refund",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Refund credits to the wallet",
)
async def refund_credits(
    payload: RefundRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedgerService = Depends(get_ledger_service),
) -> TransactionResponse:
    try:
        record = await ledger.refund(
            user_id,
            payload.amount,
            payload.description,
            reference_id=payload.reference_id,
            metadata=payload.metadata,
        )
    except CreditLedgerError as exc:
        raise _to_http_error(exc) from exc
    return _transaction_response(record)


@router.get("/packages", response_model=list[CreditPackageResponse], summary="Credit packages on sale")
async def list_packages() -> list[CreditPackageResponse]:
    return [CreditPackageResponse.model_validate(pkg) for pkg in CREDIT_PACKAGES]


@router.post("/purchases/fulfil", response_model=FulfilPurchaseResponse, summary="Credit a confirmed purchase")
async def fulfil_purchase(
    payload: FulfilPurchaseRequest,
    user_id: str = Depends(get_current_user_id),
    fulfilment: PurchaseFulfilmentService = Depends(get_fulfilment_service),
) -> FulfilPurchaseResponse:
    try:
        result = await fulfilment.fulfil(
            user_id=user_id,
            package_id=payload.package_id,
            reference_id=payload.reference_id,
            amount_paid_cents=payload.amount_paid_cents,
        )
    except CreditLedgerError as exc:
        raise _to_http_error(exc) from exc
    records = [result.purchase] + ([result.bonus] if result.bonus else [])
    return FulfilPurchaseResponse(
        package_id=result.package_id,
        credits_granted=result.purchase.amount,
        bonus_granted=result.bonus.amount if result.bonus else 0,
        transactions=[_transaction_response(r) for r in records],
    )
