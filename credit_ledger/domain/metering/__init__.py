"""Subscription meter contract and clients."""

from .client import HttpSubscriptionMeter
from .protocol import (
    AllowanceExceededError,
    MeterUnavailableError,
    SubscriptionMeter,
    SubscriptionMeterError,
)

__all__ = [
    "AllowanceExceededError",
    "HttpSubscriptionMeter",
    "MeterUnavailableError",
    "SubscriptionMeter",
    "SubscriptionMeterError",
]
