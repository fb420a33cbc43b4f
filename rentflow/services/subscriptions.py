from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
import logging
import secrets
import string
from typing import Any

from rentflow.core.config import Settings, get_settings
from rentflow.core.errors import (
    ConfigurationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    PermissionDeniedError,
    StateGuardViolation,
    ValidationError,
)
from rentflow.domain.models import ActionHistory, Payment, Subscription, utc_now
from rentflow.domain.state import (
    ActionType,
    InstallationRequestStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    SubscriptionStatus,
    UserRole,
    initial_billing_period,
)
from rentflow.persistence.repos.ledger import LedgerStore
from rentflow.services.audit import record_action
from rentflow.services.notifications.fanout import Notice, build_subscription_notifications, dispatch_notifications
from rentflow.services.notifications.push import PushGateway, PushMessage
from rentflow.services.razorpay_client import RazorpayClient
from rentflow.services.transitions import (
    Actor,
    apply_status_transition,
    run_transition,
    settle_subscription_payment,
)


logger = logging.getLogger(__name__)

_MANAGE_ROLES = {UserRole.ADMIN.value, UserRole.FRANCHISE_OWNER.value}
_COLLECT_ROLES = _MANAGE_ROLES | {UserRole.SERVICE_AGENT.value}
_PAY_ROLES = _COLLECT_ROLES | {UserRole.CUSTOMER.value}
_MANUAL_METHODS = {PaymentMethod.CASH.value, PaymentMethod.UPI.value}
_CONNECT_ID_ALPHABET = string.ascii_uppercase + string.digits
_CONNECT_ID_LENGTH = 6
_CONNECT_ID_ATTEMPTS = 10
ORDER_STATUS_CREATED = "created"
ORDER_STATUS_PAID = "paid"


@dataclass
class ConnectIdCheck:
    is_valid: bool
    message: str
    subscription: Subscription | None = None


@dataclass
class PaymentLink:
    payment_id: str
    razorpay_order_id: str
    amount: Decimal
    currency: str
    key: str | None
    message: str


@dataclass
class PaymentRefresh:
    payment_status: str
    message: str
    payment: Payment | None = None
    next_payment_date: datetime | None = None


@dataclass
class _Result:
    subscription: Subscription
    payment: Payment | None = None
    notifications: list[PushMessage] = field(default_factory=list)


class SubscriptionLifecycleService:
    """Authenticated-API side of the subscription state machine.

    Every mutation goes through ``run_transition`` so the status write, any
    payment row and the action history entry commit together, and a lost
    compare-and-set race re-evaluates the guards against the winner's state.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        razorpay: RazorpayClient | None = None,
        push_gateway: PushGateway | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.razorpay = razorpay
        self.push_gateway = push_gateway
        self.settings = settings or get_settings()

    # Access checks

    def _require_role(self, actor: Actor, allowed: set[str], action: str) -> None:
        if actor.role not in allowed:
            raise PermissionDeniedError(
                f"You do not have permission to {action}",
                details={"role": actor.role},
            )

    async def _ensure_franchise_scope(self, actor: Actor, franchise_id: str) -> None:
        if actor.role != UserRole.FRANCHISE_OWNER.value:
            return
        franchise = await self.store.find_franchise(franchise_id)
        if franchise is None or franchise.owner_id != actor.user_id:
            raise PermissionDeniedError("Subscription is not in your franchise area")

    async def _ensure_read_scope(self, actor: Actor, subscription: Subscription) -> None:
        if actor.role == UserRole.CUSTOMER.value and subscription.customer_id != actor.user_id:
            raise PermissionDeniedError("You can only access your own subscription")
        await self._ensure_franchise_scope(actor, subscription.franchise_id)

    async def _load(self, subscription_id: str, *, reload: bool = False) -> Subscription:
        subscription = await self.store.find_subscription_by_id(subscription_id, reload=reload)
        if subscription is None:
            raise NotFoundError("Subscription not found", details={"subscription_id": subscription_id})
        return subscription

    async def _notify(self, messages: list[PushMessage]) -> None:
        if self.push_gateway is None or not messages:
            return
        await dispatch_notifications(
            self.push_gateway,
            messages,
            timeout_ms=self.settings.notification_timeout_ms,
        )

    async def _generate_connect_id(self) -> str:
        for _ in range(_CONNECT_ID_ATTEMPTS):
            candidate = "".join(secrets.choice(_CONNECT_ID_ALPHABET) for _ in range(_CONNECT_ID_LENGTH))
            if await self.store.find_subscription_by_connect_id(candidate) is None:
                return candidate
        raise ConflictError("Could not allocate a unique connect id")

    # Reads

    async def get_subscription(self, actor: Actor, subscription_id: str) -> Subscription:
        subscription = await self._load(subscription_id)
        await self._ensure_read_scope(actor, subscription)
        return subscription

    async def check_connect_id(self, connect_id: str, customer_phone: str) -> ConnectIdCheck:
        subscription = await self.store.find_subscription_by_connect_id(connect_id.strip().upper())
        if subscription is None:
            return ConnectIdCheck(is_valid=False, message="Invalid connect ID")
        customer = await self.store.find_user(subscription.customer_id)
        if customer is None or customer.phone != customer_phone:
            return ConnectIdCheck(is_valid=False, message="Phone number does not match subscription")
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            return ConnectIdCheck(
                is_valid=False,
                message=f"Subscription is {subscription.status}",
                subscription=subscription,
            )
        return ConnectIdCheck(is_valid=True, message="Valid subscription", subscription=subscription)

    async def list_action_history(
        self,
        actor: Actor,
        subscription_id: str,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> list[ActionHistory]:
        subscription = await self._load(subscription_id)
        await self._ensure_read_scope(actor, subscription)
        return await self.store.list_action_history(subscription_id=subscription_id, offset=offset, limit=limit)

    # Lifecycle transitions

    async def create(
        self,
        actor: Actor,
        *,
        installation_request_id: str,
        plan_name: str,
        monthly_amount: Decimal,
        deposit_amount: Decimal,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        enable_auto_payment: bool = False,
    ) -> Subscription:
        self._require_role(actor, _MANAGE_ROLES, "create subscriptions")
        request = await self.store.find_installation_request(installation_request_id)
        if request is None:
            raise NotFoundError("Installation request not found", details={"request_id": installation_request_id})
        if request.status != InstallationRequestStatus.INSTALLATION_COMPLETED.value:
            raise ValidationError("Installation must be completed before creating a subscription")
        if request.order_type != OrderType.RENTAL.value:
            raise ValidationError("Subscriptions can only be created for rental orders")
        if await self.store.find_subscription_by_request_id(installation_request_id) is not None:
            raise ConflictError("Subscription already exists for this installation request")
        await self._ensure_franchise_scope(actor, request.franchise_id)

        start = start_date or utc_now()
        if end_date is not None and end_date <= start:
            raise ValidationError("End date must be after the start date")
        period = initial_billing_period(start, self.settings.billing_interval_months)
        connect_id = await self._generate_connect_id()

        razorpay_subscription_id: str | None = None
        deposit_order_id: str | None = None
        if enable_auto_payment:
            razorpay_subscription_id = await self._provision_autopay(
                connect_id=connect_id,
                plan_name=plan_name,
                monthly_amount=monthly_amount,
                customer_id=request.customer_id,
                open_ended=end_date is None,
            )
            if deposit_amount > 0:
                deposit_order_id = await self._create_deposit_order(connect_id, deposit_amount, request.customer_id)

        async def _create() -> _Result:
            subscription = self.store.insert_subscription(
                Subscription(
                    connect_id=connect_id,
                    razorpay_subscription_id=razorpay_subscription_id,
                    request_id=request.id,
                    customer_id=request.customer_id,
                    product_id=request.product_id,
                    franchise_id=request.franchise_id,
                    plan_name=plan_name,
                    monthly_amount=monthly_amount,
                    deposit_amount=deposit_amount,
                    status=SubscriptionStatus.ACTIVE.value,
                    start_date=start,
                    end_date=end_date,
                    current_period_start_date=period.start,
                    current_period_end_date=period.end,
                    next_payment_date=period.next_payment,
                )
            )
            await self.store.flush()
            record_action(
                self.store,
                action_type=ActionType.SUBSCRIPTION_ACTIVATED,
                performed_by=actor.user_id,
                performed_by_role=actor.role,
                subscription_id=subscription.id,
                to_status=SubscriptionStatus.ACTIVE.value,
                comment=f"Subscription created with connect ID: {connect_id}",
                metadata={
                    "connect_id": connect_id,
                    "request_id": request.id,
                    "monthly_amount": str(monthly_amount),
                    "deposit_amount": str(deposit_amount),
                    "razorpay_subscription_id": razorpay_subscription_id,
                    "auto_payment": razorpay_subscription_id is not None,
                },
            )
            deposit = None
            if deposit_amount > 0:
                deposit = self.store.insert_payment(
                    Payment(
                        razorpay_order_id=deposit_order_id,
                        user_id=subscription.customer_id,
                        subscription_id=subscription.id,
                        franchise_id=subscription.franchise_id,
                        amount=deposit_amount,
                        type=PaymentType.DEPOSIT.value,
                        status=PaymentStatus.PENDING.value,
                        payment_method=(
                            PaymentMethod.RAZORPAY_MANUAL.value if deposit_order_id else PaymentMethod.CASH.value
                        ),
                        due_date=start,
                    )
                )
                await self.store.flush()
                record_action(
                    self.store,
                    action_type=ActionType.PAYMENT_INITIATED,
                    performed_by=actor.user_id,
                    performed_by_role=actor.role,
                    subscription_id=subscription.id,
                    payment_id=deposit.id,
                    to_status=PaymentStatus.PENDING.value,
                    comment="Security deposit due",
                    metadata={"amount": str(deposit_amount), "razorpay_order_id": deposit_order_id},
                )
            notifications = await build_subscription_notifications(
                self.store,
                subscription,
                customer=Notice(
                    "Subscription Activated",
                    f"Your {plan_name} subscription is active. Connect ID: {connect_id}",
                    {"type": "subscription_activated", "connect_id": connect_id},
                ),
            )
            return _Result(subscription, deposit, notifications)

        result = await run_transition(self.store, _create)
        logger.info(
            "subscription_created subscription_id=%s connect_id=%s auto_payment=%s",
            result.subscription.id,
            connect_id,
            razorpay_subscription_id is not None,
        )
        await self._notify(result.notifications)
        return result.subscription

    async def _provision_autopay(
        self,
        *,
        connect_id: str,
        plan_name: str,
        monthly_amount: Decimal,
        customer_id: str,
        open_ended: bool,
    ) -> str | None:
        # Gateway trouble degrades to a manually-billed subscription instead of failing creation.
        if self.razorpay is None:
            logger.warning("razorpay_autopay_unavailable connect_id=%s", connect_id)
            return None
        notes = {"connect_id": connect_id, "customer_id": customer_id}
        try:
            plan = await self.razorpay.create_plan(name=plan_name, amount=monthly_amount, notes=notes)
            total_count = (
                self.settings.razorpay_open_ended_total_count
                if open_ended
                else self.settings.razorpay_fixed_term_total_count
            )
            gateway_subscription = await self.razorpay.create_subscription(
                plan_id=plan["id"],
                total_count=total_count,
                notes=notes,
            )
        except (GatewayError, ConfigurationError, KeyError) as exc:
            logger.warning("razorpay_autopay_failed connect_id=%s", connect_id, exc_info=exc)
            return None
        return gateway_subscription.get("id")

    async def _create_deposit_order(self, connect_id: str, amount: Decimal, customer_id: str) -> str | None:
        if self.razorpay is None:
            return None
        try:
            order = await self.razorpay.create_order(
                amount=amount,
                receipt=f"dep_{connect_id}",
                notes={"connect_id": connect_id, "customer_id": customer_id, "type": "deposit"},
            )
        except (GatewayError, ConfigurationError) as exc:
            logger.warning("razorpay_deposit_order_failed connect_id=%s", connect_id, exc_info=exc)
            return None
        return order.get("id")

    async def pause(
        self,
        actor: Actor,
        subscription_id: str,
        *,
        reason: str | None = None,
        pause_duration_days: int | None = None,
    ) -> Subscription:
        self._require_role(actor, _MANAGE_ROLES, "pause subscriptions")

        async def _pause() -> _Result:
            subscription = await self._load(subscription_id, reload=True)
            await self._ensure_franchise_scope(actor, subscription.franchise_id)
            metadata: dict[str, Any] = {"reason": reason}
            if pause_duration_days is not None:
                metadata["pause_duration_days"] = pause_duration_days
                metadata["resume_after"] = (utc_now() + timedelta(days=pause_duration_days)).isoformat()
            await apply_status_transition(
                self.store,
                subscription,
                SubscriptionStatus.PAUSED.value,
                actor=actor,
                comment=reason or "Subscription paused",
                metadata=metadata,
            )
            notifications = await build_subscription_notifications(
                self.store,
                subscription,
                customer=Notice(
                    "Subscription Paused",
                    "Your subscription has been paused.",
                    {"type": "subscription_paused"},
                ),
            )
            return _Result(subscription, notifications=notifications)

        result = await run_transition(self.store, _pause)
        await self._notify(result.notifications)
        return result.subscription

    async def resume(self, actor: Actor, subscription_id: str, *, reason: str | None = None) -> Subscription:
        self._require_role(actor, _MANAGE_ROLES, "resume subscriptions")

        async def _resume() -> _Result:
            subscription = await self._load(subscription_id, reload=True)
            await self._ensure_franchise_scope(actor, subscription.franchise_id)
            await self._apply_resume(subscription, actor, comment=reason or "Subscription resumed")
            notifications = await build_subscription_notifications(
                self.store,
                subscription,
                customer=Notice(
                    "Subscription Resumed",
                    "Your subscription is active again.",
                    {"type": "subscription_resumed"},
                ),
            )
            return _Result(subscription, notifications=notifications)

        result = await run_transition(self.store, _resume)
        await self._notify(result.notifications)
        return result.subscription

    async def _apply_resume(self, subscription: Subscription, actor: Actor, *, comment: str) -> None:
        # Billing restarts from the moment of resumption rather than the paused period.
        if subscription.status != SubscriptionStatus.PAUSED.value:
            raise StateGuardViolation(
                "Only paused subscriptions can be resumed",
                details={"from_status": subscription.status, "to_status": SubscriptionStatus.ACTIVE.value},
            )
        now = utc_now()
        period = initial_billing_period(now, self.settings.billing_interval_months)
        await apply_status_transition(
            self.store,
            subscription,
            SubscriptionStatus.ACTIVE.value,
            actor=actor,
            comment=comment,
            metadata={"next_payment_date": period.next_payment.isoformat()},
            current_period_start_date=period.start,
            current_period_end_date=period.end,
            next_payment_date=period.next_payment,
        )

    async def terminate(
        self,
        actor: Actor,
        subscription_id: str,
        *,
        reason: str,
        refund_deposit: bool = False,
    ) -> Subscription:
        self._require_role(actor, _MANAGE_ROLES, "terminate subscriptions")

        async def _terminate() -> _Result:
            subscription = await self._load(subscription_id, reload=True)
            await self._ensure_franchise_scope(actor, subscription.franchise_id)
            await apply_status_transition(
                self.store,
                subscription,
                SubscriptionStatus.TERMINATED.value,
                actor=actor,
                comment=reason,
                metadata={"reason": reason, "refund_deposit": refund_deposit},
                end_date=utc_now(),
            )
            refund = None
            if refund_deposit and subscription.deposit_amount > 0:
                # Refund execution is external; the ledger only records that one is owed.
                refund = self.store.insert_payment(
                    Payment(
                        user_id=subscription.customer_id,
                        subscription_id=subscription.id,
                        franchise_id=subscription.franchise_id,
                        amount=subscription.deposit_amount,
                        type=PaymentType.DEPOSIT.value,
                        status=PaymentStatus.PENDING.value,
                        payment_method=PaymentMethod.REFUND.value,
                        due_date=utc_now(),
                    )
                )
                await self.store.flush()
                record_action(
                    self.store,
                    action_type=ActionType.PAYMENT_INITIATED,
                    performed_by=actor.user_id,
                    performed_by_role=actor.role,
                    subscription_id=subscription.id,
                    payment_id=refund.id,
                    to_status=PaymentStatus.PENDING.value,
                    comment="Deposit refund initiated",
                    metadata={"amount": str(subscription.deposit_amount)},
                )
            notifications = await build_subscription_notifications(
                self.store,
                subscription,
                customer=Notice(
                    "Subscription Terminated",
                    "Your subscription has been terminated.",
                    {"type": "subscription_terminated"},
                ),
            )
            return _Result(subscription, refund, notifications)

        result = await run_transition(self.store, _terminate)
        await self._notify(result.notifications)
        return result.subscription

    async def update(
        self,
        actor: Actor,
        subscription_id: str,
        *,
        plan_name: str | None = None,
        monthly_amount: Decimal | None = None,
        end_date: datetime | None = None,
        clear_end_date: bool = False,
        next_payment_date: datetime | None = None,
        status: str | None = None,
        reason: str | None = None,
    ) -> Subscription:
        self._require_role(actor, _MANAGE_ROLES, "update subscriptions")
        if clear_end_date and end_date is not None:
            raise ValidationError("end_date and clear_end_date are mutually exclusive")
        if clear_end_date and status == SubscriptionStatus.TERMINATED.value:
            raise ValidationError("A terminated subscription must keep its end date")
        field_patch: dict[str, Any] = {}
        if plan_name is not None:
            field_patch["plan_name"] = plan_name
        if monthly_amount is not None:
            field_patch["monthly_amount"] = monthly_amount
        if end_date is not None:
            field_patch["end_date"] = end_date
        if clear_end_date:
            # Back to open-ended.
            field_patch["end_date"] = None
        if next_payment_date is not None:
            field_patch["next_payment_date"] = next_payment_date
        if not field_patch and status is None:
            raise ValidationError("No fields to update")

        async def _update() -> _Result:
            subscription = await self._load(subscription_id, reload=True)
            await self._ensure_franchise_scope(actor, subscription.franchise_id)
            # A status in the body is a request for a guarded transition, not a field overwrite.
            if status is not None and status != subscription.status:
                if status == SubscriptionStatus.ACTIVE.value:
                    await self._apply_resume(subscription, actor, comment=reason or "Subscription resumed")
                else:
                    extra: dict[str, Any] = {}
                    if status == SubscriptionStatus.TERMINATED.value and end_date is None:
                        extra["end_date"] = utc_now()
                    await apply_status_transition(
                        self.store,
                        subscription,
                        status,
                        actor=actor,
                        comment=reason,
                        metadata={"reason": reason},
                        **extra,
                    )
            # Explicit fields land after the transition so they override its computed dates.
            if field_patch:
                await self.store.update_subscription(subscription, **field_patch)
                changes = {
                    key: value.isoformat() if isinstance(value, datetime) else (None if value is None else str(value))
                    for key, value in field_patch.items()
                }
                record_action(
                    self.store,
                    action_type=ActionType.SUBSCRIPTION_UPDATED,
                    performed_by=actor.user_id,
                    performed_by_role=actor.role,
                    subscription_id=subscription.id,
                    from_status=subscription.status,
                    to_status=subscription.status,
                    comment=reason or "Subscription updated",
                    metadata={"changes": changes},
                )
            return _Result(subscription)

        result = await run_transition(self.store, _update)
        return result.subscription

    # Payments

    async def mark_payment_completed(
        self,
        actor: Actor,
        subscription_id: str,
        *,
        payment_method: str,
        payment_image: str | None = None,
        notes: str | None = None,
    ) -> tuple[Subscription, Payment]:
        self._require_role(actor, _COLLECT_ROLES, "mark payments as completed")
        if payment_method not in _MANUAL_METHODS:
            raise ValidationError("Manual payments must be CASH or UPI", details={"payment_method": payment_method})

        async def _settle() -> _Result:
            subscription = await self._load(subscription_id, reload=True)
            await self._ensure_franchise_scope(actor, subscription.franchise_id)
            if subscription.status not in {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAUSED.value}:
                raise StateGuardViolation(
                    f"Cannot record payments for a {subscription.status} subscription",
                    details={"status": subscription.status},
                )
            pending = await self.store.find_pending_payment(subscription.id)
            payment = await settle_subscription_payment(
                self.store,
                subscription,
                actor=actor,
                amount=pending.amount if pending is not None else subscription.monthly_amount,
                payment_method=payment_method,
                payment=pending,
                collected_by_agent_id=actor.user_id if actor.role == UserRole.SERVICE_AGENT.value else None,
                receipt_image=payment_image,
                comment=notes or f"Payment marked as completed via {payment_method}",
                metadata={"notes": notes} if notes else None,
            )
            notifications = await build_subscription_notifications(
                self.store,
                subscription,
                customer=Notice(
                    "Payment Received",
                    f"Your payment of ₹{payment.amount} has been recorded.",
                    {"type": "payment_success", "payment_id": payment.id},
                ),
            )
            return _Result(subscription, payment, notifications)

        result = await run_transition(self.store, _settle)
        await self._notify(result.notifications)
        return result.subscription, result.payment

    async def generate_payment_link(self, actor: Actor, subscription_id: str) -> PaymentLink:
        self._require_role(actor, _PAY_ROLES, "generate payment links")
        if self.razorpay is None:
            raise ConfigurationError("Razorpay client is not configured")
        subscription = await self._load(subscription_id)
        await self._ensure_read_scope(actor, subscription)
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            raise StateGuardViolation("Payment links can only be generated for active subscriptions")

        existing = await self.store.find_pending_payment(subscription.id)
        if existing is not None and existing.razorpay_order_id:
            try:
                order = await self.razorpay.fetch_order(existing.razorpay_order_id)
            except GatewayError as exc:
                logger.warning("razorpay_order_fetch_failed order_id=%s", existing.razorpay_order_id, exc_info=exc)
                order = {}
            if order.get("status") == ORDER_STATUS_CREATED:
                return PaymentLink(
                    payment_id=existing.id,
                    razorpay_order_id=existing.razorpay_order_id,
                    amount=existing.amount,
                    currency=self.settings.currency,
                    key=self.settings.razorpay_key_id,
                    message="Existing payment link found",
                )

        order = await self.razorpay.create_order(
            amount=subscription.monthly_amount,
            receipt=f"sub_{subscription.connect_id}",
            notes={
                "subscription_id": subscription.id,
                "customer_id": subscription.customer_id,
                "type": "subscription_payment",
                "connect_id": subscription.connect_id,
            },
        )
        order_id = order["id"]
        existing_id = existing.id if existing is not None else None

        async def _record_order() -> _Result:
            current = await self._load(subscription_id, reload=True)
            payment = await self.store.find_payment_by_id(existing_id) if existing_id else None
            if payment is not None:
                await self.store.update_payment(payment, razorpay_order_id=order_id)
            else:
                payment = self.store.insert_payment(
                    Payment(
                        razorpay_order_id=order_id,
                        user_id=current.customer_id,
                        subscription_id=current.id,
                        franchise_id=current.franchise_id,
                        amount=current.monthly_amount,
                        type=PaymentType.SUBSCRIPTION.value,
                        status=PaymentStatus.PENDING.value,
                        payment_method=PaymentMethod.RAZORPAY_MANUAL.value,
                        due_date=current.next_payment_date,
                    )
                )
                await self.store.flush()
            record_action(
                self.store,
                action_type=ActionType.PAYMENT_INITIATED,
                performed_by=actor.user_id,
                performed_by_role=actor.role,
                subscription_id=current.id,
                payment_id=payment.id,
                to_status=PaymentStatus.PENDING.value,
                comment="Payment link generated for subscription",
                metadata={"razorpay_order_id": order_id, "amount": str(current.monthly_amount)},
            )
            return _Result(current, payment)

        result = await run_transition(self.store, _record_order)
        return PaymentLink(
            payment_id=result.payment.id,
            razorpay_order_id=order_id,
            amount=result.payment.amount,
            currency=self.settings.currency,
            key=self.settings.razorpay_key_id,
            message="Payment link generated successfully",
        )

    async def refresh_payment_status(self, actor: Actor, subscription_id: str) -> PaymentRefresh:
        self._require_role(actor, _PAY_ROLES, "check payment status")
        if self.razorpay is None:
            raise ConfigurationError("Razorpay client is not configured")
        subscription = await self._load(subscription_id)
        await self._ensure_read_scope(actor, subscription)

        pending = await self.store.find_pending_payment(subscription.id)
        if pending is None or not pending.razorpay_order_id:
            return PaymentRefresh(payment_status="NOT_FOUND", message="No pending payment found for this subscription")

        order = await self.razorpay.fetch_order(pending.razorpay_order_id)
        if order.get("status") != ORDER_STATUS_PAID:
            return PaymentRefresh(payment_status=PaymentStatus.PENDING.value, message="Payment is still pending", payment=pending)

        payment_id = pending.id

        async def _settle() -> _Result:
            current = await self._load(subscription_id, reload=True)
            payment = await self.store.find_payment_by_id(payment_id)
            if payment is None or payment.status != PaymentStatus.PENDING.value:
                # Settled concurrently (typically by payment.captured); nothing left to apply.
                return _Result(current, payment)
            settled = await settle_subscription_payment(
                self.store,
                current,
                actor=actor,
                amount=payment.amount,
                payment_method=payment.payment_method,
                payment=payment,
                comment="Payment status refreshed from Razorpay",
                metadata={"razorpay_order_id": payment.razorpay_order_id},
            )
            return _Result(current, settled)

        result = await run_transition(self.store, _settle)
        return PaymentRefresh(
            payment_status=PaymentStatus.COMPLETED.value,
            message="Payment completed successfully",
            payment=result.payment,
            next_payment_date=result.subscription.next_payment_date,
        )

