from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any

from rentflow.core.config import get_settings
from rentflow.domain.models import Subscription
from rentflow.persistence.repos.ledger import LedgerStore
from rentflow.services.notifications.push import PushGateway, PushMessage


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationReport:
    attempted: int = 0
    delivered: int = 0
    errors: list[BaseException] = field(default_factory=list)
    timed_out: bool = False


async def build_subscription_notifications(
    store: LedgerStore,
    subscription: Subscription,
    *,
    customer: Notice | None = None,
    franchise_owner: Notice | None = None,
    admins: Notice | None = None,
) -> list[PushMessage]:
    """Resolve recipients for a subscription event into concrete push messages.

    Runs inside the ledger transaction so recipient reads see the same snapshot;
    the messages are dispatched only after commit.
    """
    base = {"subscription_id": subscription.id}
    messages: list[PushMessage] = []
    if customer is not None:
        user = await store.find_user(subscription.customer_id)
        if user is not None and user.push_token:
            messages.append(
                PushMessage(user.push_token, customer.title, customer.message, {**base, **customer.data})
            )
    if franchise_owner is not None:
        owner = await store.find_franchise_owner(subscription.franchise_id)
        if owner is not None and owner.push_token:
            messages.append(
                PushMessage(
                    owner.push_token,
                    franchise_owner.title,
                    franchise_owner.message,
                    {**base, **franchise_owner.data},
                )
            )
    if admins is not None:
        for admin in await store.list_admins():
            if admin.push_token:
                messages.append(PushMessage(admin.push_token, admins.title, admins.message, {**base, **admins.data}))
    return messages


async def dispatch_notifications(
    gateway: PushGateway,
    messages: list[PushMessage],
    *,
    timeout_ms: int | None = None,
) -> NotificationReport:
    # Join all sends and collect failures; one recipient's error never cancels its siblings.
    report = NotificationReport(attempted=len(messages))
    if not messages:
        return report
    timeout_s = (timeout_ms if timeout_ms is not None else get_settings().notification_timeout_ms) / 1000.0
    sends = [
        gateway.send_single_push_notification(
            push_token=item.push_token,
            title=item.title,
            message=item.message,
            data=item.data,
        )
        for item in messages
    ]
    try:
        results = await asyncio.wait_for(asyncio.gather(*sends, return_exceptions=True), timeout=timeout_s)
    except asyncio.TimeoutError:
        report.timed_out = True
        logger.warning("notification_fanout_timeout attempted=%s timeout_s=%s", report.attempted, timeout_s)
        return report
    for item, result in zip(messages, results):
        if isinstance(result, BaseException):
            report.errors.append(result)
            logger.warning(
                "notification_send_failed title=%s error=%s",
                item.title,
                type(result).__name__,
                exc_info=result,
            )
        else:
            report.delivered += 1
    return report
