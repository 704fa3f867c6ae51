"""
Shared fixtures for the billing test suite.

Provides:
- Async SQLite database (aiosqlite) with the schema created per test
- A fake payment provider and a recording notifier
- An httpx client bound to the FastAPI app with dependencies overridden
- Helpers to build and sign provider webhook events
"""
import json
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment BEFORE any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SITE_URL"] = "https://chatvault.test"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_123"  # matches helpers.WEBHOOK_SECRET
os.environ["STRIPE_PRICE_POWER_USER"] = "price_power"
os.environ["STRIPE_PRICE_TEAM"] = "price_team"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"

from helpers import PRICE_TABLE, FakeBillingProvider, RecordingNotifier, stripe_signature, subscription_object  # noqa: E402


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    from sqlalchemy.ext.asyncio import create_async_engine
    from app.db.models import Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.sqlite'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db):
    from app.services.subscriptions.store import SubscriptionStore

    return SubscriptionStore(db)


@pytest.fixture
def load_row(session_factory):
    """Read a user's row through a fresh session, as another request would."""
    from app.services.subscriptions.store import SubscriptionStore

    async def _load(user_id: str = "u1"):
        async with session_factory() as session:
            return await SubscriptionStore(session).get(user_id)

    return _load


@pytest.fixture
def count_rows(session_factory):
    from sqlalchemy import func, select
    from app.db.models import Subscription

    async def _count() -> int:
        async with session_factory() as session:
            res = await session.execute(select(func.count()).select_from(Subscription))
            return int(res.scalar() or 0)

    return _count


# ============================================================================
# Provider / Notifier Fixtures
# ============================================================================

@pytest.fixture
def provider() -> FakeBillingProvider:
    fake = FakeBillingProvider()
    fake.subscriptions["sub_123"] = subscription_object()
    return fake


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def ctx(store, provider):
    from app.services.billing.handlers import HandlerContext

    return HandlerContext(store=store, provider=provider, price_table=dict(PRICE_TABLE))


# ============================================================================
# FastAPI Client Fixtures
# ============================================================================

@pytest.fixture
def app(session_factory, provider, notifier):
    from app.main import app as billing_app
    from app.main import get_billing_provider, get_notifier
    from app.db.session import get_db

    async def _get_db():
        async with session_factory() as session:
            yield session

    billing_app.dependency_overrides[get_db] = _get_db
    billing_app.dependency_overrides[get_billing_provider] = lambda: provider
    billing_app.dependency_overrides[get_notifier] = lambda: notifier
    yield billing_app
    billing_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator:
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers():
    from app.core.security import sign_access_token

    def _headers(user_id: str = "u1", email: str = "u1@example.com") -> dict:
        return {"Authorization": f"Bearer {sign_access_token(user_id, email)}"}

    return _headers


@pytest.fixture
def post_event(client):
    async def _post(event: dict, *, signature: str | None = None, raw: bytes | None = None):
        payload = raw if raw is not None else json.dumps(event).encode()
        headers = {"Content-Type": "application/json"}
        sig = signature if signature is not None else stripe_signature(payload)
        if sig:
            headers["Stripe-Signature"] = sig
        return await client.post("/webhooks/billing", content=payload, headers=headers)

    return _post
