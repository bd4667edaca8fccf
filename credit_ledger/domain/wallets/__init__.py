"""Wallet store and transaction log domain exports"""

from .models import (
    NewTransaction,
    TransactionRecord,
    TransactionSource,
    TransactionType,
    WalletSnapshot,
)
from .repository import TransactionLog, WalletRepository

__all__ = [
    "NewTransaction",
    "TransactionRecord",
    "TransactionSource",
    "TransactionType",
    "WalletSnapshot",
    "TransactionLog",
    "WalletRepository",
]
