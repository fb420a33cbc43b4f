from __future__ import annotations

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from rentflow.tests.utils.api import auth_headers, build_test_app
from rentflow.tests.utils.ledger import list_history, load_subscription


ADMIN = auth_headers("usr_admin", "ADMIN")
OWNER = auth_headers("usr_owner", "FRANCHISE_OWNER")
AGENT = auth_headers("usr_agent", "SERVICE_AGENT")
CUSTOMER = auth_headers("usr_customer", "CUSTOMER")


@pytest.fixture
def client(session_factory, push_gateway, razorpay):
    app = build_test_app(session_factory, push_gateway=push_gateway, razorpay=razorpay)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_v1_success_envelope_health(client) -> None:
    async with client:
        response = await client.get("/v1/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"] == {"status": "ok", "database": "ok"}
    assert payload["meta"]["api_version"] == "v1"
    assert payload["meta"]["request_id"]
    assert response.headers["X-Request-Id"] == payload["meta"]["request_id"]


@pytest.mark.asyncio
async def test_request_id_is_propagated(client, seeded) -> None:
    async with client:
        response = await client.get(
            f"/v1/subscriptions/{seeded.subscription_id}",
            headers={**ADMIN, "X-Request-Id": "req-trace-1"},
        )

    assert response.json()["meta"]["request_id"] == "req-trace-1"
    assert response.headers["X-Request-Id"] == "req-trace-1"


@pytest.mark.asyncio
async def test_v1_error_envelope_unauthorized(client, seeded) -> None:
    async with client:
        response = await client.get(f"/v1/subscriptions/{seeded.subscription_id}")

    assert response.status_code == 401
    payload = response.json()
    assert payload["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert payload["meta"]["api_version"] == "v1"


@pytest.mark.asyncio
async def test_unknown_role_is_rejected(client, seeded) -> None:
    async with client:
        response = await client.get(
            f"/v1/subscriptions/{seeded.subscription_id}",
            headers=auth_headers("usr_admin", "SUPERUSER"),
        )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "AUTH_INVALID_ROLE"


@pytest.mark.asyncio
async def test_customer_cannot_pause(client, session_factory, seeded) -> None:
    async with client:
        response = await client.patch(f"/v1/subscriptions/{seeded.subscription_id}/pause", headers=CUSTOMER)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "AUTH_FORBIDDEN"
    async with session_factory() as db:
        assert (await load_subscription(db)).status == "ACTIVE"


@pytest.mark.asyncio
async def test_create_and_read_subscription(client, seeded, push_gateway) -> None:
    body = {
        "request_id": seeded.fresh_request_id,
        "plan_name": "RO Premium",
        "monthly_amount": "799.00",
        "deposit_amount": "1500.00",
        "start_date": "2024-03-01T00:00:00Z",
    }
    async with client:
        created = await client.post("/v1/subscriptions", json=body, headers=OWNER)
        duplicate = await client.post("/v1/subscriptions", json=body, headers=OWNER)
        data = created.json()["data"]
        fetched = await client.get(f"/v1/subscriptions/{data['id']}", headers=CUSTOMER)

    assert created.status_code == 201
    assert data["status"] == "ACTIVE"
    assert Decimal(data["monthly_amount"]) == Decimal("799")
    assert data["next_payment_date"].startswith("2024-04-01")
    assert data["razorpay_subscription_id"] is None
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"
    assert fetched.status_code == 200
    assert fetched.json()["data"]["connect_id"] == data["connect_id"]
    assert push_gateway.sent[0]["data"]["connect_id"] == data["connect_id"]


@pytest.mark.asyncio
async def test_create_rejects_unknown_fields(client, seeded) -> None:
    async with client:
        response = await client.post(
            "/v1/subscriptions",
            json={"request_id": seeded.fresh_request_id, "plan_name": "x", "monthly_amount": "10", "status": "PAUSED"},
            headers=ADMIN,
        )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_patch_cannot_set_gateway_subscription_id(client, session_factory, seeded) -> None:
    async with client:
        response = await client.patch(
            f"/v1/subscriptions/{seeded.subscription_id}",
            json={"razorpay_subscription_id": "sub_hijack"},
            headers=ADMIN,
        )

    assert response.status_code == 422
    async with session_factory() as db:
        assert (await load_subscription(db)).razorpay_subscription_id == "sub_123"


@pytest.mark.asyncio
async def test_resume_active_subscription_is_a_guard_violation(client, session_factory, seeded) -> None:
    async with client:
        response = await client.patch(f"/v1/subscriptions/{seeded.subscription_id}/resume", headers=ADMIN)

    assert response.status_code == 400
    payload = response.json()
    assert payload["error"]["code"] == "STATE_GUARD_VIOLATION"
    async with session_factory() as db:
        subscription = await load_subscription(db)
        assert await list_history(db) == []
    assert subscription.status == "ACTIVE"
    assert subscription.version == 1


@pytest.mark.asyncio
async def test_pause_terminate_and_terminate_again(client, seeded) -> None:
    path = f"/v1/subscriptions/{seeded.subscription_id}"
    async with client:
        paused = await client.patch(f"{path}/pause", json={"reason": "Travel", "pause_duration_days": 14}, headers=OWNER)
        terminated = await client.patch(f"{path}/terminate", json={"reason": "Moved"}, headers=OWNER)
        again = await client.patch(f"{path}/terminate", json={"reason": "Moved"}, headers=OWNER)
        history = await client.get(f"{path}/history", headers=OWNER)

    assert paused.json()["data"]["status"] == "PAUSED"
    assert terminated.status_code == 200
    assert terminated.json()["data"]["status"] == "TERMINATED"
    assert again.status_code == 400
    assert again.json()["error"]["code"] == "STATE_GUARD_VIOLATION"
    items = history.json()["data"]["items"]
    assert {item["action_type"] for item in items} == {"SUBSCRIPTION_PAUSED", "SUBSCRIPTION_TERMINATED"}
    paused_entry = next(item for item in items if item["action_type"] == "SUBSCRIPTION_PAUSED")
    assert paused_entry["metadata"]["pause_duration_days"] == 14


@pytest.mark.asyncio
async def test_agent_marks_payment_completed(client, seeded) -> None:
    async with client:
        response = await client.post(
            f"/v1/subscriptions/{seeded.subscription_id}/mark-payment-completed",
            json={"payment_method": "CASH", "notes": "Collected"},
            headers=AGENT,
        )
        rejected = await client.post(
            f"/v1/subscriptions/{seeded.subscription_id}/mark-payment-completed",
            json={"payment_method": "CARD"},
            headers=AGENT,
        )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["payment"]["status"] == "COMPLETED"
    assert data["payment"]["collected_by_agent_id"] == "usr_agent"
    assert data["subscription"]["next_payment_date"].startswith("2024-02-01")
    assert rejected.status_code == 422


@pytest.mark.asyncio
async def test_payment_link_and_refresh(client, seeded, razorpay) -> None:
    path = f"/v1/subscriptions/{seeded.subscription_id}"
    async with client:
        link = await client.post(f"{path}/generate-payment-link", headers=CUSTOMER)
        order_id = link.json()["data"]["razorpay_order_id"]
        razorpay.mark_paid(order_id)
        refreshed = await client.post(f"{path}/refresh-payment-status", headers=CUSTOMER)

    assert link.status_code == 200
    assert link.json()["data"]["currency"] == "INR"
    assert refreshed.json()["data"]["payment_status"] == "COMPLETED"
    assert refreshed.json()["data"]["next_payment_date"].startswith("2024-02-01")


@pytest.mark.asyncio
async def test_payment_link_without_gateway_is_a_configuration_error(session_factory, push_gateway, seeded) -> None:
    app = build_test_app(session_factory, push_gateway=push_gateway, razorpay=None)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(f"/v1/subscriptions/{seeded.subscription_id}/generate-payment-link", headers=ADMIN)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "CONFIGURATION_ERROR"


@pytest.mark.asyncio
async def test_connect_id_check_is_public(client, seeded) -> None:
    async with client:
        valid = await client.post(
            "/v1/subscriptions/check",
            json={"connect_id": seeded.connect_id, "customer_phone": seeded.customer_phone},
        )
        invalid = await client.post(
            "/v1/subscriptions/check",
            json={"connect_id": "QQQQQQ", "customer_phone": seeded.customer_phone},
        )

    assert valid.status_code == 200
    assert valid.json()["data"]["is_valid"] is True
    assert valid.json()["data"]["subscription"]["id"] == seeded.subscription_id
    assert invalid.json()["data"] == {"is_valid": False, "message": "Invalid connect ID", "subscription": None}


@pytest.mark.asyncio
async def test_unknown_subscription_is_not_found(client, seeded) -> None:
    async with client:
        response = await client.get("/v1/subscriptions/sub_missing", headers=ADMIN)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_patch_null_end_date_reopens_subscription(client, session_factory, seeded) -> None:
    path = f"/v1/subscriptions/{seeded.subscription_id}"
    async with client:
        fixed = await client.patch(path, json={"end_date": "2025-01-01T00:00:00Z"}, headers=ADMIN)
        renamed = await client.patch(path, json={"plan_name": "RO Plus"}, headers=ADMIN)
        reopened = await client.patch(path, json={"end_date": None}, headers=ADMIN)

    assert fixed.json()["data"]["end_date"].startswith("2025-01-01")
    # Omitting end_date leaves it untouched.
    assert renamed.json()["data"]["end_date"].startswith("2025-01-01")
    assert reopened.status_code == 200
    assert reopened.json()["data"]["end_date"] is None
    async with session_factory() as db:
        assert (await load_subscription(db)).end_date is None
