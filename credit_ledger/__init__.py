"""Dual-source credit accounting: wallet ledger plus metered subscription allowance."""

__version__ = "1.0.0"
