from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from rentflow.core.errors import WebhookPayloadError


class WebhookEventType(str, Enum):
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_CHARGED = "subscription.charged"
    SUBSCRIPTION_PAUSED = "subscription.paused"
    SUBSCRIPTION_HALTED = "subscription.halted"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_COMPLETED = "subscription.completed"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"


class RazorpayPaymentEntity(BaseModel):
    # Only fields the reconciliation handlers read; everything else stays in `raw`.
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    amount: int = Field(ge=0)
    currency: str | None = None
    status: str | None = None
    order_id: str | None = None
    subscription_id: str | None = None
    method: str | None = None
    error_code: str | None = None
    error_description: str | None = None

    @property
    def amount_major(self) -> Decimal:
        # Gateway amounts are minor units (paise).
        return Decimal(self.amount) / Decimal(100)


class RazorpaySubscriptionEntity(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    status: str | None = None
    plan_id: str | None = None
    paid_count: int | None = None
    current_start: int | None = None
    current_end: int | None = None


@dataclass(frozen=True)
class WebhookEvent:
    # Tagged union: `event_type` decides which entities are guaranteed present.
    event: str
    event_type: WebhookEventType | None
    subscription: RazorpaySubscriptionEntity | None = None
    payment: RazorpayPaymentEntity | None = None
    raw_subscription: dict[str, Any] = field(default_factory=dict)
    raw_payment: dict[str, Any] = field(default_factory=dict)

    @property
    def is_known(self) -> bool:
        return self.event_type is not None


_REQUIRES_SUBSCRIPTION = {
    WebhookEventType.SUBSCRIPTION_ACTIVATED,
    WebhookEventType.SUBSCRIPTION_CHARGED,
    WebhookEventType.SUBSCRIPTION_PAUSED,
    WebhookEventType.SUBSCRIPTION_HALTED,
    WebhookEventType.SUBSCRIPTION_CANCELLED,
    WebhookEventType.SUBSCRIPTION_COMPLETED,
    WebhookEventType.SUBSCRIPTION_UPDATED,
}
_REQUIRES_PAYMENT = {
    WebhookEventType.SUBSCRIPTION_CHARGED,
    WebhookEventType.PAYMENT_CAPTURED,
    WebhookEventType.PAYMENT_FAILED,
}


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any] | None:
    wrapper = payload.get(name)
    if wrapper is None:
        return None
    if not isinstance(wrapper, dict) or not isinstance(wrapper.get("entity"), dict):
        raise WebhookPayloadError(f"payload.{name}.entity must be an object")
    return wrapper["entity"]


def parse_webhook_event(body: Any) -> WebhookEvent:
    # Validate the gateway body once at the boundary; handlers only see typed entities.
    if not isinstance(body, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")
    event = body.get("event")
    if not isinstance(event, str) or not event:
        raise WebhookPayloadError("Webhook body is missing the event type")
    try:
        event_type: WebhookEventType | None = WebhookEventType(event)
    except ValueError:
        event_type = None
    if event_type is None:
        return WebhookEvent(event=event, event_type=None)

    payload = body.get("payload") or {}
    if not isinstance(payload, dict):
        raise WebhookPayloadError("payload must be an object")

    raw_subscription = _entity(payload, "subscription")
    raw_payment = _entity(payload, "payment")
    if event_type in _REQUIRES_SUBSCRIPTION and raw_subscription is None:
        raise WebhookPayloadError(f"{event} requires payload.subscription.entity")
    if event_type in _REQUIRES_PAYMENT and raw_payment is None:
        raise WebhookPayloadError(f"{event} requires payload.payment.entity")

    try:
        subscription = (
            RazorpaySubscriptionEntity.model_validate(raw_subscription) if raw_subscription is not None else None
        )
        payment = RazorpayPaymentEntity.model_validate(raw_payment) if raw_payment is not None else None
    except PydanticValidationError as exc:
        raise WebhookPayloadError(
            f"Invalid {event} payload",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc

    return WebhookEvent(
        event=event,
        event_type=event_type,
        subscription=subscription,
        payment=payment,
        raw_subscription=raw_subscription or {},
        raw_payment=raw_payment or {},
    )
