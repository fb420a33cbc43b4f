from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
import logging
from typing import Any, Protocol

import httpx

from rentflow.core.config import get_settings
from rentflow.core.errors import ConfigurationError, GatewayError
from rentflow.services.resilience import retry_async


logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    # Gateway amounts are integers in paise.
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RazorpayClient(Protocol):
    async def create_plan(self, *, name: str, amount: Decimal, notes: dict[str, Any] | None = None) -> dict[str, Any]:
        ...

    async def create_subscription(
        self,
        *,
        plan_id: str,
        total_count: int,
        notes: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        ...

    async def create_order(self, *, amount: Decimal, receipt: str, notes: dict[str, Any] | None = None) -> dict[str, Any]:
        ...

    async def fetch_order(self, order_id: str) -> dict[str, Any]:
        ...


class HttpRazorpayClient:
    """Minimal Razorpay REST client over httpx with basic auth."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        key_id = self._settings.razorpay_key_id
        key_secret = self._settings.razorpay_key_secret
        if not key_id or not key_secret:
            raise ConfigurationError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required")
        # Reuse a single client for connection pooling to the gateway.
        self._client = httpx.AsyncClient(
            base_url=self._settings.razorpay_api_base,
            auth=(key_id, key_secret),
            timeout=self._settings.razorpay_timeout_ms / 1000.0,
        )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _send(self, method: str, path: str, json: dict[str, Any] | None) -> httpx.Response:
        client = self._get_client()
        if method != "GET":
            # Creates are not idempotent at the gateway, so they get exactly one attempt.
            return await client.request(method, path, json=json)

        async def _get() -> httpx.Response:
            response = await client.get(path)
            if response.status_code >= 500:
                response.raise_for_status()
            return response

        return await retry_async(_get)

    async def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self._send(method, path, json)
        except httpx.HTTPStatusError as exc:
            # 5xx that outlived its retries; reported below with its status.
            response = exc.response
        except (httpx.HTTPError, TimeoutError) as exc:
            logger.warning("razorpay_request_failed method=%s path=%s", method, path, exc_info=exc)
            raise GatewayError(
                "Razorpay request failed",
                details={"path": path, "reason": type(exc).__name__},
            ) from exc

        if response.status_code >= 400:
            description = None
            try:
                description = (response.json().get("error") or {}).get("description")
            except ValueError:
                description = None
            logger.warning(
                "razorpay_request_rejected method=%s path=%s status=%s",
                method,
                path,
                response.status_code,
            )
            raise GatewayError(
                f"Razorpay responded with status {response.status_code}",
                details={"path": path, "status": response.status_code, "description": description},
            )
        return response.json()

    async def create_plan(self, *, name: str, amount: Decimal, notes: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/plans",
            json={
                "period": "monthly",
                "interval": self._settings.billing_interval_months,
                "item": {
                    "name": name,
                    "amount": to_minor_units(amount),
                    "currency": self._settings.currency,
                },
                "notes": notes or {},
            },
        )

    async def create_subscription(
        self,
        *,
        plan_id: str,
        total_count: int,
        notes: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/subscriptions",
            json={
                "plan_id": plan_id,
                "total_count": total_count,
                "customer_notify": 1,
                "notes": notes or {},
            },
        )

    async def create_order(self, *, amount: Decimal, receipt: str, notes: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/orders",
            json={
                "amount": to_minor_units(amount),
                "currency": self._settings.currency,
                "receipt": receipt,
                "notes": notes or {},
            },
        )

    async def fetch_order(self, order_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}")
