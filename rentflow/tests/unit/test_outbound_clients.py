from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rentflow.core.config import get_settings
from rentflow.core.errors import ConfigurationError, GatewayError, NotificationError
from rentflow.services.notifications.push import ExpoPushGateway, is_expo_push_token
from rentflow.services.razorpay_client import HttpRazorpayClient, to_minor_units
from rentflow.services.subscriptions import SubscriptionLifecycleService
from rentflow.services.transitions import Actor


def _expo_app(received: list[dict[str, Any]], ticket: dict[str, Any], status_code: int = 200) -> FastAPI:
    # Minimal Expo push endpoint for gateway contract tests.
    app = FastAPI()

    @app.post("/--/api/v2/push/send")
    async def send(request: Request) -> JSONResponse:
        received.append(await request.json())
        return JSONResponse({"data": ticket}, status_code=status_code)

    return app


def _razorpay_app(calls: list[tuple[str, str, dict[str, Any] | None]]) -> FastAPI:
    app = FastAPI()

    @app.post("/v1/orders")
    async def create_order(request: Request) -> JSONResponse:
        body = await request.json()
        calls.append(("POST", "/orders", body))
        return JSONResponse({"id": "order_abc", "status": "created", **body})

    @app.get("/v1/orders/{order_id}")
    async def fetch_order(order_id: str) -> JSONResponse:
        calls.append(("GET", f"/orders/{order_id}", None))
        if order_id == "order_missing":
            return JSONResponse(
                {"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}},
                status_code=400,
            )
        return JSONResponse({"id": order_id, "status": "paid"})

    @app.post("/v1/plans")
    async def create_plan(request: Request) -> JSONResponse:
        body = await request.json()
        calls.append(("POST", "/plans", body))
        return JSONResponse({"id": "plan_abc", **body})

    return app


def test_expo_token_shape() -> None:
    assert is_expo_push_token("ExponentPushToken[abc123]")
    assert is_expo_push_token("ExpoPushToken[abc123]")
    assert not is_expo_push_token("fcm:abc123")
    assert not is_expo_push_token(None)


@pytest.mark.asyncio
async def test_expo_gateway_posts_push_payload() -> None:
    received: list[dict[str, Any]] = []
    app = _expo_app(received, {"status": "ok", "id": "ticket-1"})
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="https://exp.host")
    gateway = ExpoPushGateway(client=client)

    await gateway.send_single_push_notification(
        push_token="ExponentPushToken[abc]",
        title="Payment Successful",
        message="Paid",
        data={"type": "payment_success"},
    )
    await gateway.aclose()

    assert received == [
        {
            "to": "ExponentPushToken[abc]",
            "title": "Payment Successful",
            "body": "Paid",
            "data": {"type": "payment_success"},
            "sound": "default",
            "priority": "high",
            "badge": 1,
        }
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("token", "ticket", "status_code"),
    [
        ("not-a-token", {"status": "ok"}, 200),
        ("ExponentPushToken[abc]", {"status": "error", "message": "DeviceNotRegistered"}, 200),
        ("ExponentPushToken[abc]", {}, 503),
    ],
)
async def test_expo_gateway_raises_notification_error(token, ticket, status_code) -> None:
    app = _expo_app([], ticket, status_code)
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="https://exp.host")
    gateway = ExpoPushGateway(client=client)

    with pytest.raises(NotificationError):
        await gateway.send_single_push_notification(push_token=token, title="t", message="m")
    await gateway.aclose()


def test_minor_units_round_half_up() -> None:
    assert to_minor_units(Decimal("500")) == 50000
    assert to_minor_units(Decimal("499.995")) == 50000
    assert to_minor_units(Decimal("0.01")) == 1


@pytest.mark.asyncio
async def test_razorpay_client_converts_amounts_and_maps_errors() -> None:
    calls: list[tuple[str, str, dict[str, Any] | None]] = []
    app = _razorpay_app(calls)
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="https://api.razorpay.test/v1")
    razorpay = HttpRazorpayClient(client=client)

    order = await razorpay.create_order(amount=Decimal("500"), receipt="sub_AB12CD", notes={"type": "subscription"})
    plan = await razorpay.create_plan(name="RO Basic", amount=Decimal("499.50"))
    fetched = await razorpay.fetch_order("order_abc")
    with pytest.raises(GatewayError) as exc_info:
        await razorpay.fetch_order("order_missing")
    await razorpay.aclose()

    assert order["id"] == "order_abc"
    assert calls[0][2]["amount"] == 50000
    assert calls[0][2]["currency"] == "INR"
    assert plan["item"]["amount"] == 49950
    assert plan["period"] == "monthly"
    assert fetched["status"] == "paid"
    assert exc_info.value.details["status"] == 400
    assert exc_info.value.details["description"] == "The id provided does not exist"


@pytest.mark.asyncio
async def test_razorpay_client_requires_credentials(monkeypatch) -> None:
    monkeypatch.delenv("RAZORPAY_KEY_ID", raising=False)
    monkeypatch.delenv("RAZORPAY_KEY_SECRET", raising=False)

    with pytest.raises(ConfigurationError):
        await HttpRazorpayClient().fetch_order("order_abc")


def _apply_env(monkeypatch, **overrides: str) -> None:
    # Apply environment overrides and reset cached settings.
    for key, value in overrides.items():
        monkeypatch.setenv(key, str(value))
    get_settings.cache_clear()


def _unreliable_razorpay_app(calls: dict[str, int]) -> FastAPI:
    # order_slow never answers in time; order_flaky fails once; order_down always fails.
    app = FastAPI()

    @app.post("/v1/orders")
    async def create_order(request: Request) -> JSONResponse:
        body = await request.json()
        calls["create"] = calls.get("create", 0) + 1
        order_id = "order_slow" if calls["create"] == 1 else "order_fresh"
        return JSONResponse({"id": order_id, "status": "created", **body})

    @app.get("/v1/orders/{order_id}")
    async def fetch_order(order_id: str) -> JSONResponse:
        calls[order_id] = calls.get(order_id, 0) + 1
        if order_id == "order_slow":
            await asyncio.sleep(1.0)
        if order_id == "order_down" or (order_id == "order_flaky" and calls[order_id] == 1):
            return JSONResponse({"error": {"description": "upstream unavailable"}}, status_code=503)
        return JSONResponse({"id": order_id, "status": "created"})

    return app


def _unreliable_client(calls: dict[str, int]) -> HttpRazorpayClient:
    app = _unreliable_razorpay_app(calls)
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="https://api.razorpay.test/v1")
    return HttpRazorpayClient(client=client)


@pytest.mark.asyncio
async def test_razorpay_slow_read_becomes_gateway_error(monkeypatch) -> None:
    _apply_env(monkeypatch, RAZORPAY_TIMEOUT_MS=50, RAZORPAY_RETRY_MAX_ATTEMPTS=1)
    calls: dict[str, int] = {}
    razorpay = _unreliable_client(calls)

    with pytest.raises(GatewayError) as exc_info:
        await razorpay.fetch_order("order_slow")
    await razorpay.aclose()

    assert exc_info.value.details["reason"] == "TimeoutError"
    assert calls["order_slow"] == 1


@pytest.mark.asyncio
async def test_razorpay_read_retries_server_errors(monkeypatch) -> None:
    _apply_env(monkeypatch, RAZORPAY_RETRY_MAX_ATTEMPTS=2, RAZORPAY_RETRY_BACKOFF_MS=1)
    calls: dict[str, int] = {}
    razorpay = _unreliable_client(calls)

    recovered = await razorpay.fetch_order("order_flaky")
    with pytest.raises(GatewayError) as exc_info:
        await razorpay.fetch_order("order_down")
    await razorpay.aclose()

    assert recovered["status"] == "created"
    assert calls["order_flaky"] == 2
    assert calls["order_down"] == 2
    assert exc_info.value.details["status"] == 503


@pytest.mark.asyncio
async def test_payment_link_regenerates_when_order_lookup_times_out(monkeypatch, store, seeded, push_gateway) -> None:
    _apply_env(monkeypatch, RAZORPAY_TIMEOUT_MS=50, RAZORPAY_RETRY_MAX_ATTEMPTS=1)
    calls: dict[str, int] = {}
    razorpay = _unreliable_client(calls)
    service = SubscriptionLifecycleService(store, razorpay=razorpay, push_gateway=push_gateway)
    customer = Actor(user_id=seeded.customer_id, role="CUSTOMER")

    first = await service.generate_payment_link(customer, seeded.subscription_id)
    second = await service.generate_payment_link(customer, seeded.subscription_id)
    await razorpay.aclose()

    assert first.razorpay_order_id == "order_slow"
    assert second.razorpay_order_id == "order_fresh"
    assert second.payment_id == first.payment_id
    assert second.message == "Payment link generated successfully"
