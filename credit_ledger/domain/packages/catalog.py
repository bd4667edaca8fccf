"""Credit packages offered for one-time purchase.

Prices are in USD cents.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class CreditPackage:
    id: str
    name: str
    credits: int
    price_cents: int
    description: str
    bonus_credits: int = 0
    popular: bool = False

    @property
    def price_display(self) -> str:
        return f"${self.price_cents / 100:.2f}"


CREDIT_PACKAGES: tuple[CreditPackage, ...] = (
    CreditPackage(
        id="starter",
        name="Starter",
        credits=100,
        price_cents=999,
        description="Perfect for trying out GEO optimization",
    ),
    CreditPackage(
        id="pro",
        name="Pro",
        credits=500,
        price_cents=3999,
        description="Best value for regular users",
        bonus_credits=50,  # 10%
        popular=True,
    ),
    CreditPackage(
        id="enterprise",
        name="Enterprise",
        credits=2000,
        price_cents=14999,
        description="For agencies and power users",
        bonus_credits=500,  # 25%
    ),
)


def get_credit_package(package_id: str) -> Optional[CreditPackage]:
    return next((pkg for pkg in CREDIT_PACKAGES if pkg.id == package_id), None)
