"""Credit package catalogue and purchase fulfilment"""

from .catalog import CREDIT_PACKAGES, CreditPackage, get_credit_package
from .service import FulfilmentResult, PurchaseFulfilmentService

__all__ = [
    "CREDIT_PACKAGES",
    "CreditPackage",
    "FulfilmentResult",
    "PurchaseFulfilmentService",
    "get_credit_package",
]
