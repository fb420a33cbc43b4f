from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Awaitable, Callable, TypeVar

from rentflow.core.config import SYSTEM_ACTOR, get_settings
from rentflow.core.errors import ConcurrentModificationError
from rentflow.domain.models import ActionHistory, Payment, Subscription, utc_now
from rentflow.domain.state import (
    ActionType,
    PaymentStatus,
    PaymentType,
    UserRole,
    action_for_transition,
    advance_billing_period,
    ensure_transition,
)
from rentflow.persistence.repos.ledger import LedgerStore
from rentflow.services.audit import record_action


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str


SYSTEM = Actor(user_id=SYSTEM_ACTOR, role=UserRole.ADMIN.value)


async def run_transition(
    store: LedgerStore,
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int | None = None,
) -> T:
    """Run ``operation`` in one ledger transaction, retrying lost compare-and-set races.

    ``operation`` must reload the rows it mutates and re-check its guards on every
    attempt; a transition that stopped being valid after the winner committed then
    fails with the guard's own error instead of overwriting it.
    """
    attempts = max(1, max_attempts or get_settings().subscription_cas_max_attempts)
    attempt = 1
    while True:
        try:
            async with store.atomic():
                return await operation()
        except ConcurrentModificationError:
            if attempt >= attempts:
                logger.warning("ledger_cas_exhausted attempts=%s", attempts)
                raise
            logger.info("ledger_cas_retry attempt=%s", attempt)
            attempt += 1


async def apply_status_transition(
    store: LedgerStore,
    subscription: Subscription,
    target: str,
    *,
    actor: Actor,
    comment: str | None = None,
    metadata: dict[str, Any] | None = None,
    **fields: Any,
) -> ActionHistory:
    # One guarded status write plus its audit row; both paths (webhook and API) come through here.
    from_status = subscription.status
    ensure_transition(from_status, target)
    action_type = action_for_transition(from_status, target)
    await store.update_subscription(subscription, status=target, **fields)
    return record_action(
        store,
        action_type=action_type,
        performed_by=actor.user_id,
        performed_by_role=actor.role,
        subscription_id=subscription.id,
        from_status=from_status,
        to_status=target,
        comment=comment,
        metadata=metadata,
    )


async def settle_subscription_payment(
    store: LedgerStore,
    subscription: Subscription,
    *,
    actor: Actor,
    amount: Decimal,
    payment_method: str,
    payment: Payment | None = None,
    razorpay_payment_id: str | None = None,
    razorpay_order_id: str | None = None,
    collected_by_agent_id: str | None = None,
    receipt_image: str | None = None,
    advance_period: bool = True,
    comment: str | None = None,
    metadata: dict[str, Any] | None = None,
    paid_at: datetime | None = None,
) -> Payment:
    """Complete one billing cycle's payment and roll the subscription period forward.

    The gateway charge and manual settlement both call this, so a subscription
    ends up in the same state whichever way the cycle was paid.
    """
    paid_at = paid_at or utc_now()
    due_date = subscription.next_payment_date
    from_status: str | None = None
    if payment is None:
        payment = store.insert_payment(
            Payment(
                razorpay_payment_id=razorpay_payment_id,
                razorpay_order_id=razorpay_order_id,
                razorpay_subscription_id=subscription.razorpay_subscription_id,
                user_id=subscription.customer_id,
                subscription_id=subscription.id,
                franchise_id=subscription.franchise_id,
                amount=amount,
                type=PaymentType.SUBSCRIPTION.value,
                status=PaymentStatus.COMPLETED.value,
                payment_method=payment_method,
                collected_by_agent_id=collected_by_agent_id,
                receipt_image=receipt_image,
                due_date=due_date,
                paid_date=paid_at,
            )
        )
        await store.flush()
    else:
        from_status = payment.status
        patch: dict[str, Any] = {
            "status": PaymentStatus.COMPLETED.value,
            "payment_method": payment_method,
            "paid_date": paid_at,
        }
        if razorpay_payment_id and not payment.razorpay_payment_id:
            patch["razorpay_payment_id"] = razorpay_payment_id
        if collected_by_agent_id:
            patch["collected_by_agent_id"] = collected_by_agent_id
        if receipt_image:
            patch["receipt_image"] = receipt_image
        await store.update_payment(payment, **patch)

    period = None
    if advance_period:
        period = advance_billing_period(
            subscription.current_period_end_date,
            get_settings().billing_interval_months,
        )
        await store.update_subscription(
            subscription,
            current_period_start_date=period.start,
            current_period_end_date=period.end,
            next_payment_date=period.next_payment,
        )

    record_action(
        store,
        action_type=ActionType.PAYMENT_COMPLETED,
        performed_by=actor.user_id,
        performed_by_role=actor.role,
        subscription_id=subscription.id,
        payment_id=payment.id,
        from_status=from_status,
        to_status=PaymentStatus.COMPLETED.value,
        comment=comment,
        metadata={
            **(metadata or {}),
            "amount": str(amount),
            "payment_method": payment_method,
            "next_payment_date": period.next_payment.isoformat() if period else None,
        },
    )
    return payment
