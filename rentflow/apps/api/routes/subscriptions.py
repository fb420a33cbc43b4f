from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from rentflow.apps.api.deps import Principal, get_lifecycle_service, require_roles
from rentflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rentflow.apps.api.response import SuccessEnvelope, success_response
from rentflow.domain.models import ActionHistory, Payment, Subscription
from rentflow.domain.state import SubscriptionStatus, UserRole
from rentflow.services.subscriptions import SubscriptionLifecycleService


router = APIRouter(prefix="/subscriptions", tags=["subscriptions"], responses=DEFAULT_ERROR_RESPONSES)

_MANAGERS = (UserRole.ADMIN, UserRole.FRANCHISE_OWNER)
_COLLECTORS = (UserRole.ADMIN, UserRole.FRANCHISE_OWNER, UserRole.SERVICE_AGENT)
_ALL_ROLES = tuple(UserRole)


class SubscriptionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    request_id: str = Field(min_length=1)
    plan_name: str = Field(min_length=1, max_length=255)
    monthly_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    deposit_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    start_date: datetime | None = None
    end_date: datetime | None = None
    enable_auto_payment: bool = False


class SubscriptionUpdateRequest(BaseModel):
    # Unknown fields (including the gateway subscription id) are rejected outright.
    model_config = ConfigDict(extra="forbid")

    plan_name: str | None = Field(default=None, min_length=1, max_length=255)
    monthly_amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    end_date: datetime | None = None
    next_payment_date: datetime | None = None
    status: SubscriptionStatus | None = None
    reason: str | None = Field(default=None, max_length=1024)


class PauseRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1024)
    pause_duration_days: int | None = Field(default=None, ge=1, le=365)


class ResumeRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1024)


class TerminateRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1024)
    refund_deposit: bool = False


class MarkPaymentCompletedRequest(BaseModel):
    payment_method: Literal["CASH", "UPI"]
    payment_image: str | None = Field(default=None, max_length=2048)
    notes: str | None = Field(default=None, max_length=1024)


class ConnectIdCheckRequest(BaseModel):
    connect_id: str = Field(min_length=1, max_length=16)
    customer_phone: str = Field(min_length=1, max_length=32)


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    connect_id: str
    razorpay_subscription_id: str | None
    request_id: str
    customer_id: str
    product_id: str
    franchise_id: str
    plan_name: str
    monthly_amount: Decimal
    deposit_amount: Decimal
    status: str
    start_date: datetime
    end_date: datetime | None
    current_period_start_date: datetime
    current_period_end_date: datetime
    next_payment_date: datetime
    created_at: datetime
    updated_at: datetime


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    razorpay_payment_id: str | None
    razorpay_order_id: str | None
    subscription_id: str | None
    amount: Decimal
    type: str
    status: str
    payment_method: str
    collected_by_agent_id: str | None
    receipt_image: str | None
    due_date: datetime | None
    paid_date: datetime | None


class ActionHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    subscription_id: str | None
    payment_id: str | None
    action_type: str
    from_status: str | None
    to_status: str | None
    performed_by: str
    performed_by_role: str
    comment: str | None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class ConnectIdCheckResponse(BaseModel):
    is_valid: bool
    message: str
    subscription: SubscriptionResponse | None = None


class PaymentCompletedResponse(BaseModel):
    subscription: SubscriptionResponse
    payment: PaymentResponse
    message: str


class PaymentLinkResponse(BaseModel):
    payment_id: str
    razorpay_order_id: str
    amount: Decimal
    currency: str
    key: str | None
    message: str


class PaymentRefreshResponse(BaseModel):
    payment_status: str
    message: str
    payment: PaymentResponse | None = None
    next_payment_date: datetime | None = None


class ActionHistoryListResponse(BaseModel):
    items: list[ActionHistoryResponse]


def _subscription(subscription: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse.model_validate(subscription)


def _payment(payment: Payment | None) -> PaymentResponse | None:
    return PaymentResponse.model_validate(payment) if payment is not None else None


def _history(entry: ActionHistory) -> ActionHistoryResponse:
    return ActionHistoryResponse.model_validate(entry)


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[SubscriptionResponse] | SubscriptionResponse,
)
async def create_subscription(
    payload: SubscriptionCreateRequest,
    request: Request,
    principal: Principal = Depends(require_roles(*_MANAGERS)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    subscription = await service.create(
        principal.as_actor(),
        installation_request_id=payload.request_id,
        plan_name=payload.plan_name,
        monthly_amount=payload.monthly_amount,
        deposit_amount=payload.deposit_amount,
        start_date=payload.start_date,
        end_date=payload.end_date,
        enable_auto_payment=payload.enable_auto_payment,
    )
    return success_response(request=request, data=_subscription(subscription))


# Public lookup used by customers on first login; no identity headers required.
@router.post("/check", response_model=SuccessEnvelope[ConnectIdCheckResponse] | ConnectIdCheckResponse)
async def check_connect_id(
    payload: ConnectIdCheckRequest,
    request: Request,
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    result = await service.check_connect_id(payload.connect_id, payload.customer_phone)
    data = ConnectIdCheckResponse(
        is_valid=result.is_valid,
        message=result.message,
        subscription=_subscription(result.subscription) if result.subscription is not None else None,
    )
    return success_response(request=request, data=data)


@router.get("/{subscription_id}", response_model=SuccessEnvelope[SubscriptionResponse] | SubscriptionResponse)
async def get_subscription(
    subscription_id: str,
    request: Request,
    principal: Principal = Depends(require_roles(*_ALL_ROLES)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    subscription = await service.get_subscription(principal.as_actor(), subscription_id)
    return success_response(request=request, data=_subscription(subscription))


@router.patch("/{subscription_id}", response_model=SuccessEnvelope[SubscriptionResponse] | SubscriptionResponse)
async def update_subscription(
    subscription_id: str,
    payload: SubscriptionUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_roles(*_MANAGERS)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    subscription = await service.update(
        principal.as_actor(),
        subscription_id,
        plan_name=payload.plan_name,
        monthly_amount=payload.monthly_amount,
        end_date=payload.end_date,
        # An explicit null reopens the subscription; an omitted field leaves it alone.
        clear_end_date="end_date" in payload.model_fields_set and payload.end_date is None,
        next_payment_date=payload.next_payment_date,
        status=payload.status.value if payload.status is not None else None,
        reason=payload.reason,
    )
    return success_response(request=request, data=_subscription(subscription))


@router.patch(
    "/{subscription_id}/pause",
    response_model=SuccessEnvelope[SubscriptionResponse] | SubscriptionResponse,
)
async def pause_subscription(
    subscription_id: str,
    request: Request,
    payload: PauseRequest | None = None,
    principal: Principal = Depends(require_roles(*_MANAGERS)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    payload = payload or PauseRequest()
    subscription = await service.pause(
        principal.as_actor(),
        subscription_id,
        reason=payload.reason,
        pause_duration_days=payload.pause_duration_days,
    )
    return success_response(request=request, data=_subscription(subscription))


@router.patch(
    "/{subscription_id}/resume",
    response_model=SuccessEnvelope[SubscriptionResponse] | SubscriptionResponse,
)
async def resume_subscription(
    subscription_id: str,
    request: Request,
    payload: ResumeRequest | None = None,
    principal: Principal = Depends(require_roles(*_MANAGERS)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    payload = payload or ResumeRequest()
    subscription = await service.resume(principal.as_actor(), subscription_id, reason=payload.reason)
    return success_response(request=request, data=_subscription(subscription))


@router.patch(
    "/{subscription_id}/terminate",
    response_model=SuccessEnvelope[SubscriptionResponse] | SubscriptionResponse,
)
async def terminate_subscription(
    subscription_id: str,
    payload: TerminateRequest,
    request: Request,
    principal: Principal = Depends(require_roles(*_MANAGERS)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    subscription = await service.terminate(
        principal.as_actor(),
        subscription_id,
        reason=payload.reason,
        refund_deposit=payload.refund_deposit,
    )
    return success_response(request=request, data=_subscription(subscription))


@router.post(
    "/{subscription_id}/mark-payment-completed",
    response_model=SuccessEnvelope[PaymentCompletedResponse] | PaymentCompletedResponse,
)
async def mark_payment_completed(
    subscription_id: str,
    payload: MarkPaymentCompletedRequest,
    request: Request,
    principal: Principal = Depends(require_roles(*_COLLECTORS)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    subscription, payment = await service.mark_payment_completed(
        principal.as_actor(),
        subscription_id,
        payment_method=payload.payment_method,
        payment_image=payload.payment_image,
        notes=payload.notes,
    )
    data = PaymentCompletedResponse(
        subscription=_subscription(subscription),
        payment=_payment(payment),
        message="Payment marked as completed successfully",
    )
    return success_response(request=request, data=data)


@router.post(
    "/{subscription_id}/generate-payment-link",
    response_model=SuccessEnvelope[PaymentLinkResponse] | PaymentLinkResponse,
)
async def generate_payment_link(
    subscription_id: str,
    request: Request,
    principal: Principal = Depends(require_roles(*_ALL_ROLES)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    link = await service.generate_payment_link(principal.as_actor(), subscription_id)
    data = PaymentLinkResponse(
        payment_id=link.payment_id,
        razorpay_order_id=link.razorpay_order_id,
        amount=link.amount,
        currency=link.currency,
        key=link.key,
        message=link.message,
    )
    return success_response(request=request, data=data)


@router.post(
    "/{subscription_id}/refresh-payment-status",
    response_model=SuccessEnvelope[PaymentRefreshResponse] | PaymentRefreshResponse,
)
async def refresh_payment_status(
    subscription_id: str,
    request: Request,
    principal: Principal = Depends(require_roles(*_ALL_ROLES)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    result = await service.refresh_payment_status(principal.as_actor(), subscription_id)
    data = PaymentRefreshResponse(
        payment_status=result.payment_status,
        message=result.message,
        payment=_payment(result.payment),
        next_payment_date=result.next_payment_date,
    )
    return success_response(request=request, data=data)


@router.get(
    "/{subscription_id}/history",
    response_model=SuccessEnvelope[ActionHistoryListResponse] | ActionHistoryListResponse,
)
async def list_action_history(
    subscription_id: str,
    request: Request,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(require_roles(*_ALL_ROLES)),
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> dict:
    entries = await service.list_action_history(
        principal.as_actor(),
        subscription_id,
        offset=offset,
        limit=limit,
    )
    return success_response(request=request, data=ActionHistoryListResponse(items=[_history(e) for e in entries]))
