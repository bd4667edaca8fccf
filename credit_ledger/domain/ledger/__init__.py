"""Credit ledger domain exports"""

from credit_ledger.domain.exceptions import (
    ConcurrencyError,
    CreditLedgerError,
    ExternalServiceError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)

from .models import (
    AuditReport,
    BalanceSource,
    CombinedBalance,
    DeductionResult,
    EligibilityResult,
)
from .service import CreditLedgerService

__all__ = [
    "AuditReport",
    "BalanceSource",
    "CombinedBalance",
    "ConcurrencyError",
    "CreditLedgerError",
    "CreditLedgerService",
    "DeductionResult",
    "EligibilityResult",
    "ExternalServiceError",
    "InsufficientCreditsError",
    "NotFoundError",
    "ValidationError",
]
