"""Simple dependency container for wiring core services."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache

from credit_ledger.core.config import Settings, get_settings
from credit_ledger.domain.metering import HttpSubscriptionMeter, SubscriptionMeter
from credit_ledger.infrastructure.database.session import dispose_engine, get_engine


@dataclass(slots=True)
class ApplicationContainer:
    settings: Settings
    subscription_meter: SubscriptionMeter | None = field(default=None)

    def init_infrastructure(self) -> None:
        """Ensure infrastructure singletons (database engine, meter client) are initialised."""
        get_engine()
        if self.subscription_meter is None:
            self.subscription_meter = HttpSubscriptionMeter.from_settings(self.settings.metering)

    async def shutdown(self) -> None:
        meter = self.subscription_meter
        if isinstance(meter, HttpSubscriptionMeter):
            await meter.aclose()
        await dispose_engine()


@lru_cache()
def get_container() -> ApplicationContainer:
    container = ApplicationContainer(settings=get_settings())
    container.init_infrastructure()
    return container


__all__ = ["ApplicationContainer", "get_container"]
