from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Awaitable, Callable

from rentflow.core.errors import ConflictError
from rentflow.domain.events import WebhookEvent, WebhookEventType
from rentflow.domain.models import Payment, Subscription, utc_now
from rentflow.domain.state import (
    ActionType,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    SubscriptionStatus,
    can_transition,
    is_terminal,
)
from rentflow.persistence.repos.ledger import LedgerStore
from rentflow.services.audit import record_system_action
from rentflow.services.notifications.fanout import (
    Notice,
    NotificationReport,
    build_subscription_notifications,
    dispatch_notifications,
)
from rentflow.services.notifications.push import PushGateway, PushMessage
from rentflow.services.transitions import (
    SYSTEM,
    apply_status_transition,
    run_transition,
    settle_subscription_payment,
)


logger = logging.getLogger(__name__)

RESULT_PROCESSED = "processed"
RESULT_DUPLICATE = "duplicate"
RESULT_IGNORED = "ignored"


@dataclass
class WebhookOutcome:
    result: str
    message: str
    notifications: list[PushMessage] = field(default_factory=list)
    report: NotificationReport | None = None


def _ignored(message: str) -> WebhookOutcome:
    return WebhookOutcome(result=RESULT_IGNORED, message=message)


def _duplicate(message: str) -> WebhookOutcome:
    return WebhookOutcome(result=RESULT_DUPLICATE, message=message)


# Target status and notification copy for the status-only subscription events.
_STATUS_EVENTS: dict[WebhookEventType, tuple[SubscriptionStatus, str, Notice, Notice, Notice]] = {
    WebhookEventType.SUBSCRIPTION_PAUSED: (
        SubscriptionStatus.PAUSED,
        "Subscription paused via Razorpay",
        Notice(
            "Subscription Paused",
            "Your subscription has been paused due to payment issues. Please update your payment method.",
            {"type": "subscription_paused", "action": "update_payment"},
        ),
        Notice("Subscription Paused", "A customer subscription has been paused due to payment failures.",
               {"type": "subscription_paused"}),
        Notice("Subscription Paused", "Subscription paused by the payment gateway.",
               {"type": "admin_subscription_paused"}),
    ),
    WebhookEventType.SUBSCRIPTION_HALTED: (
        SubscriptionStatus.PAUSED,
        "Subscription halted by Razorpay after repeated charge failures",
        Notice(
            "Subscription Paused",
            "Your subscription has been paused due to payment issues. Please update your payment method.",
            {"type": "subscription_paused", "action": "update_payment"},
        ),
        Notice("Subscription Paused", "A customer subscription has been paused due to payment failures.",
               {"type": "subscription_paused"}),
        Notice("Subscription Paused", "Subscription halted by the payment gateway.",
               {"type": "admin_subscription_paused"}),
    ),
    WebhookEventType.SUBSCRIPTION_CANCELLED: (
        SubscriptionStatus.TERMINATED,
        "Subscription cancelled via Razorpay",
        Notice("Subscription Cancelled", "Your subscription has been cancelled.",
               {"type": "subscription_cancelled"}),
        Notice("Subscription Cancelled", "A customer subscription in your franchise has been cancelled.",
               {"type": "subscription_cancelled"}),
        Notice("Subscription Cancelled", "Subscription cancelled on the payment gateway.",
               {"type": "admin_subscription_cancelled"}),
    ),
    WebhookEventType.SUBSCRIPTION_COMPLETED: (
        SubscriptionStatus.EXPIRED,
        "Subscription completed via Razorpay",
        Notice("Subscription Completed", "Your subscription has completed all billing cycles.",
               {"type": "subscription_completed"}),
        Notice("Subscription Completed", "A customer subscription in your franchise has completed.",
               {"type": "subscription_completed"}),
        Notice("Subscription Completed", "Subscription completed on the payment gateway.",
               {"type": "admin_subscription_completed"}),
    ),
}


class ReconciliationHandlers:
    """One handler per gateway event; each runs a single ledger transaction.

    Handlers are idempotent: a redelivered payment is detected by its gateway
    payment id, and a redelivered status event finds the subscription already in
    the target status.
    """

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    async def subscription_activated(self, event: WebhookEvent) -> WebhookOutcome:
        gateway_id = event.subscription.id
        subscription = await self.store.find_subscription_by_gateway_id(gateway_id)
        if subscription is None:
            logger.info("webhook_subscription_unknown event=%s razorpay_subscription_id=%s", event.event, gateway_id)
            return _ignored("Subscription not found")
        # First cycle is collected through the deposit/manual path; nothing to reconcile.
        logger.info("webhook_subscription_activated subscription_id=%s", subscription.id)
        return _ignored("Subscription activation acknowledged")

    async def subscription_charged(self, event: WebhookEvent) -> WebhookOutcome:
        return await self._record_charge(event.subscription.id, event)

    async def payment_captured(self, event: WebhookEvent) -> WebhookOutcome:
        entity = event.payment

        async def _settle_local() -> WebhookOutcome | None:
            payment = await self.store.find_payment_by_gateway_id(entity.id)
            if payment is None and entity.order_id:
                payment = await self.store.find_payment_by_order_id(entity.order_id)
            if payment is None:
                return None
            if payment.status == PaymentStatus.COMPLETED.value:
                return _duplicate("Payment already captured")
            if payment.status not in {PaymentStatus.PENDING.value, PaymentStatus.FAILED.value}:
                logger.info("webhook_payment_not_capturable payment_id=%s status=%s", payment.id, payment.status)
                return _ignored(f"Payment is {payment.status}")
            return await self._complete_local_payment(payment, event)

        try:
            outcome = await run_transition(self.store, _settle_local)
        except ConflictError:
            if await self.store.find_payment_by_gateway_id(entity.id) is not None:
                return _duplicate("Payment already captured")
            raise
        if outcome is not None:
            return outcome
        if entity.subscription_id:
            # Recurring capture with no local row yet; same effect as subscription.charged.
            return await self._record_charge(entity.subscription_id, event)
        logger.info("webhook_payment_unknown event=%s razorpay_payment_id=%s", event.event, entity.id)
        return _ignored("Payment not found")

    async def payment_failed(self, event: WebhookEvent) -> WebhookOutcome:
        entity = event.payment

        async def _fail() -> WebhookOutcome:
            payment = await self.store.find_payment_by_gateway_id(entity.id)
            if payment is None and entity.order_id:
                payment = await self.store.find_payment_by_order_id(entity.order_id)
            if payment is None:
                logger.info("webhook_payment_unknown event=%s razorpay_payment_id=%s", event.event, entity.id)
                return _ignored("Payment not found")
            if payment.status == PaymentStatus.FAILED.value:
                return _duplicate("Payment already marked failed")
            if payment.status != PaymentStatus.PENDING.value:
                logger.warning(
                    "webhook_transition_forbidden event=%s payment_id=%s status=%s",
                    event.event,
                    payment.id,
                    payment.status,
                )
                return _ignored(f"Payment is {payment.status}")
            patch = {"status": PaymentStatus.FAILED.value}
            if not payment.razorpay_payment_id:
                patch["razorpay_payment_id"] = entity.id
            await self.store.update_payment(payment, **patch)
            record_system_action(
                self.store,
                action_type=ActionType.PAYMENT_FAILED,
                subscription_id=payment.subscription_id,
                payment_id=payment.id,
                from_status=PaymentStatus.PENDING.value,
                to_status=PaymentStatus.FAILED.value,
                comment="Payment failed via Razorpay",
                metadata={
                    "razorpay_payment_id": entity.id,
                    "razorpay_order_id": entity.order_id,
                    "amount": entity.amount,
                    "error_code": entity.error_code,
                    "error_description": entity.error_description,
                },
            )
            notifications: list[PushMessage] = []
            if payment.user_id:
                user = await self.store.find_user(payment.user_id)
                if user is not None and user.push_token:
                    notifications.append(
                        PushMessage(
                            user.push_token,
                            "Payment Failed",
                            "Your payment could not be processed. Please try again.",
                            {"type": "payment_failed", "payment_id": payment.id},
                        )
                    )
            return WebhookOutcome(RESULT_PROCESSED, "Payment marked failed", notifications)

        return await run_transition(self.store, _fail)

    async def subscription_updated(self, event: WebhookEvent) -> WebhookOutcome:
        entity = event.subscription

        async def _audit() -> WebhookOutcome:
            subscription = await self.store.find_subscription_by_gateway_id(entity.id)
            if subscription is None:
                logger.info("webhook_subscription_unknown event=%s razorpay_subscription_id=%s", event.event, entity.id)
                return _ignored("Subscription not found")
            record_system_action(
                self.store,
                action_type=ActionType.SUBSCRIPTION_UPDATED,
                subscription_id=subscription.id,
                from_status=subscription.status,
                to_status=subscription.status,
                comment="Subscription updated on Razorpay",
                metadata={
                    "razorpay_subscription_id": entity.id,
                    "gateway_status": entity.status,
                    "plan_id": entity.plan_id,
                },
            )
            return WebhookOutcome(RESULT_PROCESSED, "Subscription update recorded")

        return await run_transition(self.store, _audit)

    async def subscription_status(self, event: WebhookEvent) -> WebhookOutcome:
        target, comment, customer, owner, admins = _STATUS_EVENTS[event.event_type]
        entity = event.subscription

        async def _transition() -> WebhookOutcome:
            subscription = await self.store.find_subscription_by_gateway_id(entity.id, reload=True)
            if subscription is None:
                logger.info("webhook_subscription_unknown event=%s razorpay_subscription_id=%s", event.event, entity.id)
                return _ignored("Subscription not found")
            if subscription.status == target.value:
                return _duplicate(f"Subscription already {target.value}")
            if not can_transition(subscription.status, target.value):
                # The gateway cannot move a row out of a terminal state; acknowledge without writing.
                logger.warning(
                    "webhook_transition_forbidden event=%s subscription_id=%s from=%s to=%s",
                    event.event,
                    subscription.id,
                    subscription.status,
                    target.value,
                )
                return _ignored(f"Subscription is {subscription.status}")
            await apply_status_transition(
                self.store,
                subscription,
                target.value,
                actor=SYSTEM,
                comment=comment,
                metadata={"razorpay_subscription_id": entity.id, "gateway_status": entity.status},
            )
            notifications = await build_subscription_notifications(
                self.store,
                subscription,
                customer=customer,
                franchise_owner=owner,
                admins=admins,
            )
            return WebhookOutcome(RESULT_PROCESSED, f"Subscription {target.value.lower()}", notifications)

        return await run_transition(self.store, _transition)

    async def _record_charge(self, razorpay_subscription_id: str, event: WebhookEvent) -> WebhookOutcome:
        entity = event.payment

        async def _charge() -> WebhookOutcome:
            if await self.store.find_payment_by_gateway_id(entity.id) is not None:
                return _duplicate("Payment already recorded")
            subscription = await self.store.find_subscription_by_gateway_id(razorpay_subscription_id, reload=True)
            if subscription is None:
                logger.info(
                    "webhook_subscription_unknown event=%s razorpay_subscription_id=%s",
                    event.event,
                    razorpay_subscription_id,
                )
                return _ignored("Subscription not found")
            terminal = is_terminal(subscription.status)
            if terminal:
                # Money moved, so the payment is recorded, but a closed subscription's period stays put.
                logger.warning(
                    "webhook_charge_on_terminal_subscription subscription_id=%s status=%s",
                    subscription.id,
                    subscription.status,
                )
            payment = await settle_subscription_payment(
                self.store,
                subscription,
                actor=SYSTEM,
                amount=entity.amount_major,
                payment_method=PaymentMethod.RAZORPAY_AUTOPAY.value,
                razorpay_payment_id=entity.id,
                razorpay_order_id=entity.order_id,
                advance_period=not terminal,
                comment="Recurring payment charged via Razorpay",
                metadata={
                    "razorpay_payment_id": entity.id,
                    "razorpay_subscription_id": razorpay_subscription_id,
                    "gateway_amount": entity.amount,
                },
            )
            notifications = await self._payment_notifications(subscription, payment)
            return WebhookOutcome(RESULT_PROCESSED, "Payment recorded", notifications)

        try:
            return await run_transition(self.store, _charge)
        except ConflictError:
            # A concurrent delivery inserted the same gateway payment id first.
            if await self.store.find_payment_by_gateway_id(entity.id) is not None:
                return _duplicate("Payment already recorded")
            raise

    async def _complete_local_payment(self, payment: Payment, event: WebhookEvent) -> WebhookOutcome:
        entity = event.payment
        subscription = None
        if payment.subscription_id:
            subscription = await self.store.find_subscription_by_id(payment.subscription_id, reload=True)
        if subscription is not None and payment.type == PaymentType.SUBSCRIPTION.value:
            await settle_subscription_payment(
                self.store,
                subscription,
                actor=SYSTEM,
                amount=payment.amount,
                payment_method=payment.payment_method,
                payment=payment,
                razorpay_payment_id=entity.id,
                advance_period=not is_terminal(subscription.status),
                comment="Payment captured via Razorpay",
                metadata={
                    "razorpay_payment_id": entity.id,
                    "razorpay_order_id": entity.order_id,
                    "gateway_amount": entity.amount,
                },
            )
        else:
            from_status = payment.status
            patch = {"status": PaymentStatus.COMPLETED.value, "paid_date": utc_now()}
            if not payment.razorpay_payment_id:
                patch["razorpay_payment_id"] = entity.id
            await self.store.update_payment(payment, **patch)
            record_system_action(
                self.store,
                action_type=ActionType.PAYMENT_COMPLETED,
                subscription_id=payment.subscription_id,
                payment_id=payment.id,
                from_status=from_status,
                to_status=PaymentStatus.COMPLETED.value,
                comment="Payment captured via Razorpay",
                metadata={
                    "razorpay_payment_id": entity.id,
                    "razorpay_order_id": entity.order_id,
                    "gateway_amount": entity.amount,
                },
            )
        notifications: list[PushMessage] = []
        if subscription is not None:
            notifications = await self._payment_notifications(subscription, payment)
        return WebhookOutcome(RESULT_PROCESSED, "Payment captured", notifications)

    async def _payment_notifications(self, subscription: Subscription, payment: Payment) -> list[PushMessage]:
        data = {"payment_id": payment.id, "amount": str(payment.amount)}
        return await build_subscription_notifications(
            self.store,
            subscription,
            customer=Notice(
                "Payment Successful",
                f"Your monthly payment of ₹{payment.amount} has been processed successfully.",
                {"type": "payment_success", **data},
            ),
            franchise_owner=Notice(
                "Payment Received",
                f"Payment of ₹{payment.amount} received for subscription {subscription.connect_id}.",
                {"type": "payment_received", **data},
            ),
            admins=Notice(
                "Recurring Payment Processed",
                f"Payment of ₹{payment.amount} processed for subscription {subscription.connect_id}.",
                {"type": "admin_payment_notification", **data},
            ),
        )


Handler = Callable[[WebhookEvent], Awaitable[WebhookOutcome]]


class WebhookDispatcher:
    """Route verified gateway events to their handler, then fan out notifications."""

    def __init__(
        self,
        store: LedgerStore,
        push_gateway: PushGateway,
        *,
        notification_timeout_ms: int | None = None,
    ) -> None:
        self.push_gateway = push_gateway
        self.notification_timeout_ms = notification_timeout_ms
        handlers = ReconciliationHandlers(store)
        self._handlers: dict[WebhookEventType, Handler] = {
            WebhookEventType.SUBSCRIPTION_ACTIVATED: handlers.subscription_activated,
            WebhookEventType.SUBSCRIPTION_CHARGED: handlers.subscription_charged,
            WebhookEventType.SUBSCRIPTION_PAUSED: handlers.subscription_status,
            WebhookEventType.SUBSCRIPTION_HALTED: handlers.subscription_status,
            WebhookEventType.SUBSCRIPTION_CANCELLED: handlers.subscription_status,
            WebhookEventType.SUBSCRIPTION_COMPLETED: handlers.subscription_status,
            WebhookEventType.SUBSCRIPTION_UPDATED: handlers.subscription_updated,
            WebhookEventType.PAYMENT_CAPTURED: handlers.payment_captured,
            WebhookEventType.PAYMENT_FAILED: handlers.payment_failed,
        }

    async def dispatch(self, event: WebhookEvent) -> WebhookOutcome:
        handler = self._handlers.get(event.event_type) if event.is_known else None
        if handler is None:
            logger.info("webhook_event_unhandled event=%s", event.event)
            return _ignored(f"Unhandled event {event.event}")
        outcome = await handler(event)
        logger.info("webhook_event_handled event=%s result=%s", event.event, outcome.result)
        # Ledger is committed at this point; delivery problems are logged, never raised.
        if outcome.notifications:
            outcome.report = await dispatch_notifications(
                self.push_gateway,
                outcome.notifications,
                timeout_ms=self.notification_timeout_ms,
            )
        return outcome
