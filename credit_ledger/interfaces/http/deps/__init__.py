"""Reusable FastAPI dependencies."""

from .database import get_db_session
from .ledger import (
    get_current_user_id,
    get_fulfilment_service,
    get_ledger_service,
    get_subscription_meter,
)

__all__ = [
    "get_db_session",
    "get_current_user_id",
    "get_fulfilment_service",
    "get_ledger_service",
    "get_subscription_meter",
]
