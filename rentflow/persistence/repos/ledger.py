from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rentflow.core.errors import (
    ConcurrentModificationError,
    ConflictError,
    LedgerStoreError,
    ValidationError,
)
from rentflow.domain.models import (
    ActionHistory,
    Franchise,
    InstallationRequest,
    Payment,
    Subscription,
    User,
)
from rentflow.domain.state import PaymentStatus, PaymentType, UserRole


logger = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    # Prefixed ids keep log lines and audit rows self-describing (sub_, pay_, ah_).
    return f"{prefix}_{uuid4().hex[:20]}"


class LedgerStore:
    """Transactional access to subscriptions, payments and their action history.

    Writes are staged on the session and only become visible when the enclosing
    ``atomic()`` block exits cleanly, so a transition and its history row land
    together or not at all.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["LedgerStore"]:
        try:
            yield self
            await self.session.commit()
        except StaleDataError as exc:
            await self.session.rollback()
            raise ConcurrentModificationError(
                "Subscription was modified concurrently",
            ) from exc
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError(
                "Ledger write violates a uniqueness constraint",
                details={"reason": str(exc.orig) if exc.orig is not None else None},
            ) from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("ledger_transaction_failed")
            raise LedgerStoreError("Ledger transaction failed") from exc
        except BaseException:
            # Domain guard failures abort the whole unit, staged rows included.
            await self.session.rollback()
            raise

    async def flush(self) -> None:
        # Surface version/unique violations inside atomic() so they map to domain errors.
        await self.session.flush()

    # Subscriptions

    async def find_subscription_by_id(self, subscription_id: str, *, reload: bool = False) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.id == subscription_id)
        if reload:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_subscription_by_gateway_id(
        self, razorpay_subscription_id: str, *, reload: bool = False
    ) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.razorpay_subscription_id == razorpay_subscription_id)
        if reload:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_subscription_by_connect_id(self, connect_id: str) -> Subscription | None:
        result = await self.session.execute(select(Subscription).where(Subscription.connect_id == connect_id))
        return result.scalar_one_or_none()

    async def find_subscription_by_request_id(self, request_id: str) -> Subscription | None:
        result = await self.session.execute(select(Subscription).where(Subscription.request_id == request_id))
        return result.scalar_one_or_none()

    def insert_subscription(self, subscription: Subscription) -> Subscription:
        if not subscription.id:
            subscription.id = new_id("sub")
        self.session.add(subscription)
        return subscription

    async def update_subscription(self, subscription: Subscription, **patch: Any) -> Subscription:
        """Apply ``patch`` and flush as ``UPDATE ... WHERE id = ? AND version = ?``.

        A row changed by another writer since it was loaded raises
        ConcurrentModificationError; the caller reloads and re-checks guards.
        """
        if "razorpay_subscription_id" in patch and subscription.razorpay_subscription_id is not None:
            if patch["razorpay_subscription_id"] != subscription.razorpay_subscription_id:
                raise ValidationError(
                    "Gateway subscription id cannot be changed once set",
                    details={"subscription_id": subscription.id},
                )
        for key, value in patch.items():
            setattr(subscription, key, value)
        try:
            await self.session.flush()
        except StaleDataError as exc:
            raise ConcurrentModificationError(
                "Subscription was modified concurrently",
                details={"subscription_id": subscription.id},
            ) from exc
        return subscription

    # Payments

    async def find_payment_by_id(self, payment_id: str) -> Payment | None:
        result = await self.session.execute(select(Payment).where(Payment.id == payment_id))
        return result.scalar_one_or_none()

    async def find_payment_by_gateway_id(self, razorpay_payment_id: str) -> Payment | None:
        result = await self.session.execute(
            select(Payment).where(Payment.razorpay_payment_id == razorpay_payment_id)
        )
        return result.scalar_one_or_none()

    async def find_payment_by_order_id(self, razorpay_order_id: str) -> Payment | None:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.razorpay_order_id == razorpay_order_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_pending_payment(
        self,
        subscription_id: str,
        *,
        payment_type: str = PaymentType.SUBSCRIPTION.value,
        status: str = PaymentStatus.PENDING.value,
    ) -> Payment | None:
        # Oldest matching row first so manual settlement closes the earliest due period.
        result = await self.session.execute(
            select(Payment)
            .where(
                Payment.subscription_id == subscription_id,
                Payment.type == payment_type,
                Payment.status == status,
            )
            .order_by(Payment.created_at.asc(), Payment.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def insert_payment(self, payment: Payment) -> Payment:
        if not payment.id:
            payment.id = new_id("pay")
        self.session.add(payment)
        return payment

    async def update_payment(self, payment: Payment, **patch: Any) -> Payment:
        for key, value in patch.items():
            setattr(payment, key, value)
        await self.session.flush()
        return payment

    # Action history

    def append_action_history(self, entry: ActionHistory) -> ActionHistory:
        if not entry.id:
            entry.id = new_id("ah")
        self.session.add(entry)
        return entry

    async def list_action_history(
        self,
        *,
        subscription_id: str | None = None,
        payment_id: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> list[ActionHistory]:
        stmt = select(ActionHistory)
        if subscription_id is not None:
            stmt = stmt.where(ActionHistory.subscription_id == subscription_id)
        if payment_id is not None:
            stmt = stmt.where(ActionHistory.payment_id == payment_id)
        stmt = stmt.order_by(ActionHistory.created_at.desc(), ActionHistory.id.desc()).offset(offset).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Collaborator reads

    async def find_user(self, user_id: str) -> User | None:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def find_franchise(self, franchise_id: str) -> Franchise | None:
        result = await self.session.execute(select(Franchise).where(Franchise.id == franchise_id))
        return result.scalar_one_or_none()

    async def find_installation_request(self, request_id: str) -> InstallationRequest | None:
        result = await self.session.execute(
            select(InstallationRequest).where(InstallationRequest.id == request_id)
        )
        return result.scalar_one_or_none()

    async def find_franchise_owner(self, franchise_id: str) -> User | None:
        result = await self.session.execute(
            select(User)
            .join(Franchise, Franchise.owner_id == User.id)
            .where(Franchise.id == franchise_id)
        )
        return result.scalar_one_or_none()

    async def list_admins(self) -> list[User]:
        result = await self.session.execute(
            select(User)
            .where(User.role == UserRole.ADMIN.value, User.is_active.is_(True))
            .order_by(User.id.asc())
        )
        return list(result.scalars().all())
