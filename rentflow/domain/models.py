from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UtcDateTime(TypeDecorator):
    # Always hand back aware UTC datetimes, including on backends that drop tzinfo (SQLite).
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# Use JSONB on Postgres while keeping SQLite test databases working.
JsonType = JSON().with_variant(JSONB(), "postgresql")
MoneyType = Numeric(12, 2, asdecimal=True)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str] = mapped_column(String)
    # Persist role as a plain string; auth is owned by the upstream gateway.
    role: Mapped[str] = mapped_column(String, index=True)
    # Latest Expo push token registered by the user's device, if any.
    push_token: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now, server_default=func.now())


class Franchise(Base):
    __tablename__ = "franchises"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    city: Mapped[str] = mapped_column(String)
    owner_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now, server_default=func.now())


class InstallationRequest(Base):
    __tablename__ = "installation_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    customer_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    product_id: Mapped[str] = mapped_column(String)
    franchise_id: Mapped[str] = mapped_column(String, ForeignKey("franchises.id"), index=True)
    # OrderType value; only rentals turn into subscriptions.
    order_type: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String)
    completed_date: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now, server_default=func.now())


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_franchise_status", "franchise_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Customer-facing identifier, distinct from the internal id.
    connect_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    # Set once when a gateway autopay subscription exists; immutable afterwards.
    razorpay_subscription_id: Mapped[str | None] = mapped_column(
        String, unique=True, index=True, nullable=True
    )
    request_id: Mapped[str] = mapped_column(String, ForeignKey("installation_requests.id"), unique=True)
    customer_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    product_id: Mapped[str] = mapped_column(String)
    franchise_id: Mapped[str] = mapped_column(String, ForeignKey("franchises.id"), index=True)
    plan_name: Mapped[str] = mapped_column(String)
    monthly_amount: Mapped[Decimal] = mapped_column(MoneyType)
    deposit_amount: Mapped[Decimal] = mapped_column(MoneyType)
    status: Mapped[str] = mapped_column(String, index=True)
    start_date: Mapped[datetime] = mapped_column(UtcDateTime())
    # Null end date means an open-ended rental.
    end_date: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    current_period_start_date: Mapped[datetime] = mapped_column(UtcDateTime())
    current_period_end_date: Mapped[datetime] = mapped_column(UtcDateTime())
    next_payment_date: Mapped[datetime] = mapped_column(UtcDateTime())
    # Compare-and-set counter; every flush checks and bumps it.
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime(), default=utc_now, onupdate=utc_now, server_default=func.now()
    )

    __mapper_args__ = {"version_id_col": version}


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_subscription_status_type", "subscription_id", "status", "type"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Unique gateway payment id backs webhook idempotence.
    razorpay_payment_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    razorpay_order_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    razorpay_subscription_id: Mapped[str | None] = mapped_column(String, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("subscriptions.id"), index=True, nullable=True
    )
    franchise_id: Mapped[str | None] = mapped_column(String, ForeignKey("franchises.id"), nullable=True)
    # Major currency units; gateway minor units are converted at the boundary.
    amount: Mapped[Decimal] = mapped_column(MoneyType)
    type: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, index=True)
    payment_method: Mapped[str] = mapped_column(String)
    collected_by_agent_id: Mapped[str | None] = mapped_column(String, nullable=True)
    receipt_image: Mapped[str | None] = mapped_column(String, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    paid_date: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime(), default=utc_now, onupdate=utc_now, server_default=func.now()
    )


class ActionHistory(Base):
    __tablename__ = "action_history"
    __table_args__ = (
        Index("ix_action_history_subscription_created", "subscription_id", "created_at"),
    )

    # Append-only; one row per Subscription/Payment transition.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    subscription_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("subscriptions.id"), nullable=True
    )
    payment_id: Mapped[str | None] = mapped_column(String, ForeignKey("payments.id"), index=True, nullable=True)
    action_type: Mapped[str] = mapped_column(String, index=True)
    from_status: Mapped[str | None] = mapped_column(String, nullable=True)
    to_status: Mapped[str | None] = mapped_column(String, nullable=True)
    # User id or the literal system actor for gateway-driven transitions.
    performed_by: Mapped[str] = mapped_column(String)
    performed_by_role: Mapped[str] = mapped_column(String)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utc_now, server_default=func.now())
