"""
E2E test fixtures for the PayBroker API.

Provides:
- An in-process FastAPI test app with the payments router registered
- httpx AsyncClient wired via ASGI transport (no network needed)
- An async SQLite database session (in-memory) per test
- Seed helpers for jobs and provider accounts

Stripe is replaced by the in-memory ``FakeProcessor`` through the
``get_processor`` dependency, so the full route -> service -> DB flow is
exercised without network access.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from paybroker.api.deps import get_db, get_processor
from paybroker.api.routes import payments
from paybroker.core.config import settings
from paybroker.models import AccountStatus, Base, Job, ProviderAccount
from paybroker.models.base import utcnow
from tests.conftest import FakeProcessor


@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


API = "/api/v1/payments"

PROVIDER_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
SECOND_PROVIDER_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")


# ---------------------------------------------------------------------------
# Async engine + session (in-memory SQLite)
# ---------------------------------------------------------------------------

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def _test_engine():
    """A fresh database per test; routes may commit."""
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(_test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=_test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        await session.begin()
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# App + client
# ---------------------------------------------------------------------------

def _create_test_app(db: AsyncSession, processor: FakeProcessor) -> FastAPI:
    app = FastAPI()
    app.include_router(payments.router, prefix="/api/v1")

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_processor] = lambda: processor
    return app


@pytest.fixture
def fake_processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    """Unsigned webhooks in a test environment, and no live Stripe key."""
    monkeypatch.setattr(settings, "environment", "test")
    monkeypatch.setattr(settings, "allow_unsigned_webhooks", True)
    monkeypatch.setattr(settings, "stripe_connect_webhook_secret", "")


@pytest_asyncio.fixture
async def client(db_session, fake_processor) -> AsyncGenerator[AsyncClient, None]:
    app = _create_test_app(db_session, fake_processor)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------

async def seed_job(
    db: AsyncSession,
    *,
    price_cents: int = 10000,
    original_price_cents: int | None = None,
    discount_applied: bool = False,
    providers: list[uuid.UUID] | None = None,
    payment_intent_id: str | None = "pi_seeded",
    payment_captured: bool = False,
    completed: bool = False,
    scheduled_in_days: int | None = 7,
) -> Job:
    job = Job(
        id=uuid.uuid4(),
        price_cents=price_cents,
        original_price_cents=original_price_cents,
        discount_applied=discount_applied,
        scheduled_date=(
            utcnow().date() + timedelta(days=scheduled_in_days)
            if scheduled_in_days is not None
            else None
        ),
        requester_ref="cus_requester",
        payment_intent_id=payment_intent_id,
        payment_captured=payment_captured,
        captured_at=utcnow() if payment_captured else None,
        completed=completed,
        completed_at=utcnow() if completed else None,
        assigned_provider_ids=[str(p) for p in (providers or [])],
    )
    db.add(job)
    await db.flush()
    return job


async def seed_account(
    db: AsyncSession,
    provider_id: uuid.UUID,
    *,
    external_account_id: str = "acct_seeded",
    status: AccountStatus = AccountStatus.ACTIVE,
) -> ProviderAccount:
    active = status == AccountStatus.ACTIVE
    account = ProviderAccount(
        id=uuid.uuid4(),
        provider_id=provider_id,
        external_account_id=external_account_id,
        payouts_enabled=active,
        charges_enabled=active,
        details_submitted=active,
        pending_requirements=[],
        account_status=status.value,
        onboarding_complete=active,
    )
    db.add(account)
    await db.flush()
    return account


async def reload(db: AsyncSession, model, pk):
    """Re-read a row, bypassing the identity map's cached attributes."""
    return await db.get(model, pk, populate_existing=True)
