from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, literal_column, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.domain.models import ActionHistory, Franchise, InstallationRequest, Payment, Subscription, User
from rentflow.domain.state import InstallationRequestStatus, OrderType, SubscriptionStatus, UserRole


ADMIN_ID = "usr_admin"
OWNER_ID = "usr_owner"
OTHER_OWNER_ID = "usr_owner_2"
AGENT_ID = "usr_agent"
CUSTOMER_ID = "usr_customer"
FRANCHISE_ID = "fr_blr"
OTHER_FRANCHISE_ID = "fr_hyd"
REQUEST_ID = "req_sub"
FRESH_REQUEST_ID = "req_new"
SUBSCRIPTION_ID = "sub_local_123"
GATEWAY_SUBSCRIPTION_ID = "sub_123"
CONNECT_ID = "AB12CD"
CUSTOMER_PHONE = "+919900000001"


def utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


@dataclass(frozen=True)
class LedgerSeed:
    subscription_id: str
    gateway_subscription_id: str
    connect_id: str
    customer_id: str
    customer_phone: str
    franchise_id: str
    fresh_request_id: str


async def seed_ledger(
    session: AsyncSession,
    *,
    status: str = SubscriptionStatus.ACTIVE.value,
    period_end: datetime | None = None,
) -> LedgerSeed:
    # One franchise with an owner, an agent, an admin and a customer holding one ACTIVE rental.
    period_end = period_end or utc(2024, 1, 1)
    session.add_all(
        [
            User(id=ADMIN_ID, name="Admin", phone="+919900000000", role=UserRole.ADMIN.value,
                 push_token="ExponentPushToken[admin]"),
            User(id=OWNER_ID, name="Owner", phone="+919900000002", role=UserRole.FRANCHISE_OWNER.value,
                 push_token="ExponentPushToken[owner]"),
            User(id=OTHER_OWNER_ID, name="Other Owner", phone="+919900000003",
                 role=UserRole.FRANCHISE_OWNER.value),
            User(id=AGENT_ID, name="Agent", phone="+919900000004", role=UserRole.SERVICE_AGENT.value),
            User(id=CUSTOMER_ID, name="Customer", phone=CUSTOMER_PHONE, role=UserRole.CUSTOMER.value,
                 push_token="ExponentPushToken[customer]"),
        ]
    )
    await session.flush()
    session.add_all(
        [
            Franchise(id=FRANCHISE_ID, name="Bengaluru", city="Bengaluru", owner_id=OWNER_ID),
            Franchise(id=OTHER_FRANCHISE_ID, name="Hyderabad", city="Hyderabad", owner_id=OTHER_OWNER_ID),
        ]
    )
    await session.flush()
    for request_id in (REQUEST_ID, FRESH_REQUEST_ID):
        session.add(
            InstallationRequest(
                id=request_id,
                customer_id=CUSTOMER_ID,
                product_id="prod_ro_purifier",
                franchise_id=FRANCHISE_ID,
                order_type=OrderType.RENTAL.value,
                status=InstallationRequestStatus.INSTALLATION_COMPLETED.value,
                completed_date=utc(2023, 11, 30),
            )
        )
    await session.flush()
    session.add(
        Subscription(
            id=SUBSCRIPTION_ID,
            connect_id=CONNECT_ID,
            razorpay_subscription_id=GATEWAY_SUBSCRIPTION_ID,
            request_id=REQUEST_ID,
            customer_id=CUSTOMER_ID,
            product_id="prod_ro_purifier",
            franchise_id=FRANCHISE_ID,
            plan_name="RO Basic",
            monthly_amount=Decimal("500"),
            deposit_amount=Decimal("1000"),
            status=status,
            start_date=utc(2023, 12, 1),
            end_date=None,
            current_period_start_date=utc(2023, 12, 1),
            current_period_end_date=period_end,
            next_payment_date=period_end,
        )
    )
    await session.commit()
    return LedgerSeed(
        subscription_id=SUBSCRIPTION_ID,
        gateway_subscription_id=GATEWAY_SUBSCRIPTION_ID,
        connect_id=CONNECT_ID,
        customer_id=CUSTOMER_ID,
        customer_phone=CUSTOMER_PHONE,
        franchise_id=FRANCHISE_ID,
        fresh_request_id=FRESH_REQUEST_ID,
    )


async def load_subscription(session: AsyncSession, subscription_id: str = SUBSCRIPTION_ID) -> Subscription:
    result = await session.execute(
        select(Subscription)
        .where(Subscription.id == subscription_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# SQLite rowid follows insertion order, even for rows flushed within the same microsecond.
async def list_payments(session: AsyncSession, subscription_id: str = SUBSCRIPTION_ID) -> list[Payment]:
    result = await session.execute(
        select(Payment)
        .where(Payment.subscription_id == subscription_id)
        .order_by(literal_column("payments.rowid").asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_history(session: AsyncSession, subscription_id: str = SUBSCRIPTION_ID) -> list[ActionHistory]:
    result = await session.execute(
        select(ActionHistory)
        .where(ActionHistory.subscription_id == subscription_id)
        .order_by(literal_column("action_history.rowid").asc())
    )
    return list(result.scalars().all())


async def count_rows(session: AsyncSession) -> dict[str, int]:
    # Snapshot of ledger table sizes for zero-write assertions.
    counts: dict[str, int] = {}
    for name, model in (("payments", Payment), ("action_history", ActionHistory)):
        result = await session.execute(select(func.count()).select_from(model))
        counts[name] = int(result.scalar_one())
    return counts
