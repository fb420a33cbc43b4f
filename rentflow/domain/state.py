from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from dateutil.relativedelta import relativedelta

from rentflow.core.errors import StateGuardViolation


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    TERMINATED = "TERMINATED"
    EXPIRED = "EXPIRED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentType(str, Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    DEPOSIT = "DEPOSIT"
    SERVICE = "SERVICE"


class PaymentMethod(str, Enum):
    RAZORPAY_AUTOPAY = "RAZORPAY_AUTOPAY"
    RAZORPAY_MANUAL = "RAZORPAY_MANUAL"
    CASH = "CASH"
    UPI = "UPI"
    REFUND = "REFUND"


class ActionType(str, Enum):
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
    SUBSCRIPTION_PAUSED = "SUBSCRIPTION_PAUSED"
    SUBSCRIPTION_RESUMED = "SUBSCRIPTION_RESUMED"
    SUBSCRIPTION_TERMINATED = "SUBSCRIPTION_TERMINATED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    FRANCHISE_OWNER = "FRANCHISE_OWNER"
    SERVICE_AGENT = "SERVICE_AGENT"
    CUSTOMER = "CUSTOMER"


class OrderType(str, Enum):
    RENTAL = "RENTAL"
    PURCHASE = "PURCHASE"


class InstallationRequestStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    INSTALLATION_SCHEDULED = "INSTALLATION_SCHEDULED"
    INSTALLATION_COMPLETED = "INSTALLATION_COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = frozenset({SubscriptionStatus.TERMINATED, SubscriptionStatus.EXPIRED})

# Single transition table shared by webhook handlers and the lifecycle service.
_ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.ACTIVE: frozenset(
        {SubscriptionStatus.PAUSED, SubscriptionStatus.TERMINATED, SubscriptionStatus.EXPIRED}
    ),
    SubscriptionStatus.PAUSED: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.TERMINATED, SubscriptionStatus.EXPIRED}
    ),
    SubscriptionStatus.TERMINATED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}

_ACTION_FOR_TARGET: dict[SubscriptionStatus, ActionType] = {
    SubscriptionStatus.PAUSED: ActionType.SUBSCRIPTION_PAUSED,
    SubscriptionStatus.TERMINATED: ActionType.SUBSCRIPTION_TERMINATED,
    SubscriptionStatus.EXPIRED: ActionType.SUBSCRIPTION_EXPIRED,
}


def parse_status(value: str) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(value)
    except ValueError as exc:
        raise StateGuardViolation(
            f"Unknown subscription status: {value}",
            details={"status": value},
        ) from exc


def is_terminal(status: str) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    return parse_status(target) in _ALLOWED_TRANSITIONS[parse_status(current)]


def ensure_transition(current: str, target: str) -> None:
    # Reject guard violations outright; never coerce into a different transition.
    if can_transition(current, target):
        return
    raise StateGuardViolation(
        f"Cannot move subscription from {current} to {target}",
        details={"from_status": current, "to_status": target},
    )


def action_for_transition(current: str, target: str) -> ActionType:
    target_status = parse_status(target)
    if target_status == SubscriptionStatus.ACTIVE:
        if parse_status(current) == SubscriptionStatus.PAUSED:
            return ActionType.SUBSCRIPTION_RESUMED
        return ActionType.SUBSCRIPTION_ACTIVATED
    return _ACTION_FOR_TARGET[target_status]


def add_months(value: datetime, months: int = 1) -> datetime:
    # Clamp to month end (Jan 31 + 1 month -> Feb 28/29) instead of rolling over.
    return value + relativedelta(months=months)


@dataclass(frozen=True)
class BillingPeriod:
    start: datetime
    end: datetime
    next_payment: datetime


def initial_billing_period(start: datetime, months: int = 1) -> BillingPeriod:
    end = add_months(start, months)
    return BillingPeriod(start=start, end=end, next_payment=end)


def advance_billing_period(current_period_end: datetime, months: int = 1) -> BillingPeriod:
    # Charged and manually-settled payments both roll the period forward from its current end.
    end = add_months(current_period_end, months)
    return BillingPeriod(start=current_period_end, end=end, next_payment=end)
