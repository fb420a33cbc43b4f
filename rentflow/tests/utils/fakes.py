from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

from rentflow.core.errors import GatewayError, NotificationError
from rentflow.services.razorpay_client import to_minor_units


class FakePushGateway:
    """Records every push; tokens listed in ``failing_tokens`` raise instead."""

    def __init__(self, *, failing_tokens: set[str] | None = None, delay_s: float = 0.0) -> None:
        self.sent: list[dict[str, Any]] = []
        self.failing_tokens = failing_tokens or set()
        self.delay_s = delay_s

    async def send_single_push_notification(
        self,
        *,
        push_token: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if push_token in self.failing_tokens:
            raise NotificationError("push rejected")
        self.sent.append({"push_token": push_token, "title": title, "message": message, "data": data or {}})

    async def aclose(self) -> None:
        return None


class FakeRazorpayClient:
    """In-memory gateway: orders default to ``created`` until a test marks them paid."""

    def __init__(self, *, fail_creates: bool = False) -> None:
        self.fail_creates = fail_creates
        self.orders: dict[str, dict[str, Any]] = {}
        self.plans: list[dict[str, Any]] = []
        self.subscriptions: list[dict[str, Any]] = []
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_fake{self._counter:04d}"

    def _maybe_fail(self) -> None:
        if self.fail_creates:
            raise GatewayError("gateway unavailable")

    async def create_plan(self, *, name: str, amount: Decimal, notes: dict[str, Any] | None = None) -> dict[str, Any]:
        self._maybe_fail()
        plan = {"id": self._next_id("plan"), "item": {"name": name, "amount": to_minor_units(amount)}}
        self.plans.append(plan)
        return plan

    async def create_subscription(
        self,
        *,
        plan_id: str,
        total_count: int,
        notes: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self._maybe_fail()
        subscription = {"id": self._next_id("sub"), "plan_id": plan_id, "total_count": total_count}
        self.subscriptions.append(subscription)
        return subscription

    async def create_order(self, *, amount: Decimal, receipt: str, notes: dict[str, Any] | None = None) -> dict[str, Any]:
        self._maybe_fail()
        order = {
            "id": self._next_id("order"),
            "amount": to_minor_units(amount),
            "receipt": receipt,
            "status": "created",
            "notes": notes or {},
        }
        self.orders[order["id"]] = order
        return order

    async def fetch_order(self, order_id: str) -> dict[str, Any]:
        order = self.orders.get(order_id)
        if order is None:
            raise GatewayError("order not found", details={"order_id": order_id})
        return dict(order)

    def mark_paid(self, order_id: str) -> None:
        self.orders[order_id]["status"] = "paid"

    async def aclose(self) -> None:
        return None
