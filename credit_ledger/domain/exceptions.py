"""Credit ledger domain exceptions."""


class CreditLedgerError(Exception):
    """Base class for credit ledger errors."""


class ValidationError(CreditLedgerError):
    """Raised when a caller passes arguments that break the operation contract."""


class InsufficientCreditsError(CreditLedgerError):
    """Raised when the combined balance cannot cover the requested amount."""

    def __init__(self, required: int, available: int, message: str | None = None) -> None:
        self.required = required
        self.available = available
        super().__init__(message or f"Insufficient credits: required {required}, available {available}")

    @property
    def shortfall(self) -> int:
        return max(self.required - self.available, 0)


class ExternalServiceError(CreditLedgerError):
    """Raised when the subscription meter fails while debiting."""


class ConcurrencyError(CreditLedgerError):
    """Raised when a conditional wallet write lost against a concurrent writer."""


class NotFoundError(CreditLedgerError):
    """Raised when the requested wallet cannot be found."""
