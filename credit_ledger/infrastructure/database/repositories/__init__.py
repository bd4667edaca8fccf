"""SQLAlchemy-backed repository implementations."""

from .transaction_repository import SqlTransactionLog
from .wallet_repository import SqlWalletRepository

__all__ = [
    "SqlTransactionLog",
    "SqlWalletRepository",
]
