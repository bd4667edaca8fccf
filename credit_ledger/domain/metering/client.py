"""httpx client for the hosted subscription metering API."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from credit_ledger.core.config import MeteringSettings

from .protocol import AllowanceExceededError, MeterUnavailableError, SubscriptionMeterError

logger = logging.getLogger(__name__)

_REFUSAL_STATUSES = {402, 403}


class HttpSubscriptionMeter:
    """Talks to the metering service's ``/check`` and ``/track`` endpoints."""

    def __init__(
        self,
        base_url: str,
        secret_key: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {secret_key}"},
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: MeteringSettings) -> "HttpSubscriptionMeter":
        return cls(settings.base_url, settings.secret_key, timeout=settings.timeout_seconds)

    async def check_balance(self, user_id: str, feature_id: str) -> int:
        data = await self._post("/check", {"customer_id": user_id, "feature_id": feature_id})
        balance = data.get("balance")
        if balance is None:
            return 0
        try:
            return int(balance)
        except (TypeError, ValueError) as exc:
            raise SubscriptionMeterError(f"unexpected balance value {balance!r}") from exc

    async def debit(self, user_id: str, feature_id: str, amount: int) -> None:
        await self._post(
            "/track",
            {"customer_id": user_id, "feature_id": feature_id, "value": amount},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Metering request %s failed: %s", path, exc)
            raise MeterUnavailableError(str(exc)) from exc

        if response.status_code in _REFUSAL_STATUSES:
            raise AllowanceExceededError(response.text)
        if response.status_code == 429 or response.status_code >= 500:
            raise MeterUnavailableError(f"metering returned {response.status_code}")
        if response.status_code >= 400:
            raise SubscriptionMeterError(f"metering returned {response.status_code}: {response.text}")

        try:
            return response.json()
        except ValueError as exc:
            raise SubscriptionMeterError("metering returned a non-JSON body") from exc
