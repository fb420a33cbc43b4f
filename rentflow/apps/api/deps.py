from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.core.config import get_settings
from rentflow.domain.state import UserRole
from rentflow.persistence.db import get_session
from rentflow.persistence.repos.ledger import LedgerStore
from rentflow.services.notifications.push import PushGateway
from rentflow.services.razorpay_client import RazorpayClient
from rentflow.services.reconciliation import WebhookDispatcher
from rentflow.services.subscriptions import SubscriptionLifecycleService
from rentflow.services.transitions import Actor


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_ledger_store(db: AsyncSession = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)


def get_push_gateway(request: Request) -> PushGateway:
    # Clients live on app.state so tests can swap in fakes without globals.
    return request.app.state.push_gateway


def get_razorpay_client(request: Request) -> RazorpayClient | None:
    return getattr(request.app.state, "razorpay_client", None)


def get_lifecycle_service(
    store: LedgerStore = Depends(get_ledger_store),
    push_gateway: PushGateway = Depends(get_push_gateway),
    razorpay: RazorpayClient | None = Depends(get_razorpay_client),
) -> SubscriptionLifecycleService:
    return SubscriptionLifecycleService(store, razorpay=razorpay, push_gateway=push_gateway)


def get_webhook_dispatcher(
    store: LedgerStore = Depends(get_ledger_store),
    push_gateway: PushGateway = Depends(get_push_gateway),
) -> WebhookDispatcher:
    return WebhookDispatcher(store, push_gateway)


class Principal(BaseModel):
    # Identity asserted by the upstream auth gateway.
    user_id: str
    role: str

    def as_actor(self) -> Actor:
        return Actor(user_id=self.user_id, role=self.role)


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


def _forbidden_error(message: str) -> HTTPException:
    # Use 403 for authenticated principals lacking permissions.
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


async def get_current_principal(request: Request) -> Principal:
    settings = get_settings()
    user_id = (request.headers.get(settings.auth_header_user_id) or "").strip()
    role_header = (request.headers.get(settings.auth_header_role) or "").strip().upper()
    if not user_id or not role_header:
        raise _auth_error(f"{settings.auth_header_user_id} and {settings.auth_header_role} headers are required")
    try:
        role = UserRole(role_header)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_INVALID_ROLE", "message": f"Unknown role: {role_header}"},
        ) from exc
    return Principal(user_id=user_id, role=role.value)


def require_roles(*roles: UserRole):
    # Dependency factory to enforce RBAC at the route level.
    allowed = {role.value for role in roles}

    async def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return _dependency
