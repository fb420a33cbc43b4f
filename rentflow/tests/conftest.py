from __future__ import annotations

import os

# Point settings at an in-memory ledger before any rentflow module builds its engine.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rentflow.core.config import get_settings
from rentflow.domain.models import Base
from rentflow.persistence.repos.ledger import LedgerStore
from rentflow.tests.utils.fakes import FakePushGateway, FakeRazorpayClient
from rentflow.tests.utils.ledger import LedgerSeed, seed_ledger


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    # Tests override env per case; never leak a cached Settings between them.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def session_factory() -> async_sessionmaker[AsyncSession]:
    # Fresh schema per test so ledger state never leaks across cases.
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncSession:
    async with session_factory() as db:
        yield db


@pytest.fixture
def store(session: AsyncSession) -> LedgerStore:
    return LedgerStore(session)


@pytest.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> LedgerSeed:
    # Seed through a separate session so tests observe committed rows only.
    async with session_factory() as db:
        return await seed_ledger(db)


@pytest.fixture
def push_gateway() -> FakePushGateway:
    return FakePushGateway()


@pytest.fixture
def razorpay() -> FakeRazorpayClient:
    return FakeRazorpayClient()
