from __future__ import annotations

import json
from typing import Any

from rentflow.services.signature import SIGNATURE_HEADER, build_webhook_signature


def subscription_event(event: str, gateway_subscription_id: str, *, status: str = "active") -> dict[str, Any]:
    return {
        "entity": "event",
        "event": event,
        "payload": {
            "subscription": {
                "entity": {"id": gateway_subscription_id, "status": status, "plan_id": "plan_test"},
            }
        },
    }


def charged_event(
    gateway_subscription_id: str,
    *,
    payment_id: str = "pay_rzp_0001",
    amount: int = 50000,
    order_id: str | None = None,
) -> dict[str, Any]:
    body = subscription_event("subscription.charged", gateway_subscription_id)
    body["payload"]["payment"] = {
        "entity": {
            "id": payment_id,
            "amount": amount,
            "currency": "INR",
            "status": "captured",
            "order_id": order_id,
            "method": "upi",
        }
    }
    return body


def payment_event(
    event: str,
    *,
    payment_id: str,
    amount: int = 50000,
    order_id: str | None = None,
    subscription_id: str | None = None,
) -> dict[str, Any]:
    return {
        "entity": "event",
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "amount": amount,
                    "currency": "INR",
                    "status": "captured" if event == "payment.captured" else "failed",
                    "order_id": order_id,
                    "subscription_id": subscription_id,
                    "error_code": "BAD_REQUEST_ERROR" if event == "payment.failed" else None,
                    "error_description": "Payment declined" if event == "payment.failed" else None,
                }
            }
        },
    }


def signed_request(body: dict[str, Any], secret: str) -> tuple[bytes, dict[str, str]]:
    # Sign the exact bytes that go on the wire.
    raw = json.dumps(body, separators=(",", ":")).encode("utf-8")
    headers = {
        SIGNATURE_HEADER: build_webhook_signature(secret, raw),
        "Content-Type": "application/json",
    }
    return raw, headers
