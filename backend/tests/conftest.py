"""Shared test configuration and fixtures.

Uses a transactional rollback strategy per test for full isolation:
- Each test runs inside an outer transaction that rolls back after the test.
- Booking writes call ``session.commit()``; a session bound to a connection
  that is already in a transaction only commits its own work, so the outer
  rollback still discards everything.

The default database is in-memory SQLite via aiosqlite. Set
``TEST_DATABASE_URL`` to run against PostgreSQL instead.
"""

import os
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from staybook.auth.jwt import create_access_token
from staybook.auth.passwords import hash_password
from staybook.billing.stripe_client import get_stripe_client
from staybook.database import Base, get_db
from staybook.main import app
from staybook.models.property import Property
from staybook.models.user import User

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")


def _make_engine(url: str = TEST_DATABASE_URL):
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(url, echo=False, pool_pre_ping=True)


# ---------------------------------------------------------------------------
# Session-scoped: create / drop all tables once per test session
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def test_engine():
    """Create a session-scoped engine tied to the session event loop."""
    engine = _make_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def setup_test_db(test_engine):
    """Create all tables at the start of the session and drop them at the end."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ---------------------------------------------------------------------------
# Per-test: transactional rollback for isolation
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(loop_scope="session")
async def db_session(test_engine, setup_test_db) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session wrapped in a transaction that always rolls back."""
    async with test_engine.connect() as connection:
        transaction = await connection.begin()
        session = AsyncSession(bind=connection, expire_on_commit=False)

        try:
            yield session
        finally:
            await session.close()
            await transaction.rollback()


@pytest_asyncio.fixture(loop_scope="session")
async def fake_stripe() -> MagicMock:
    """A StripeClient stand-in whose async calls return canned objects."""
    client = MagicMock()
    client.v1.payment_intents.create_async = AsyncMock(
        return_value=SimpleNamespace(id="pi_test_123", client_secret="pi_test_123_secret_abc")
    )
    client.v1.refunds.create_async = AsyncMock(return_value=SimpleNamespace(id="re_test_123", status="pending"))
    return client


@pytest_asyncio.fixture(loop_scope="session")
async def client(db_session: AsyncSession, fake_stripe: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test DB session and fake Stripe."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_client] = lambda: fake_stripe

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Convenience fixtures: users
# ---------------------------------------------------------------------------


async def create_user(db_session: AsyncSession, label: str = "user", **overrides) -> User:
    """Insert a user directly in the DB."""
    unique = uuid.uuid4().hex[:8]
    fields = {
        "email": f"{label}-{unique}@test.com",
        "hashed_password": hash_password("testpass123"),
        "name": f"Test {label.title()}",
        "is_active": True,
    }
    fields.update(overrides)
    user = User(**fields)
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


def bearer(user: User) -> dict[str, str]:
    """Authorization headers for ``user``."""
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest_asyncio.fixture(loop_scope="session")
async def host_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, "host")


@pytest_asyncio.fixture(loop_scope="session")
async def guest_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, "guest")


@pytest_asyncio.fixture(loop_scope="session")
async def host_headers(host_user: User) -> dict[str, str]:
    return bearer(host_user)


@pytest_asyncio.fixture(loop_scope="session")
async def guest_headers(guest_user: User) -> dict[str, str]:
    return bearer(guest_user)


# ---------------------------------------------------------------------------
# Convenience fixtures: properties
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(loop_scope="session")
async def make_property(db_session: AsyncSession, host_user: User) -> Callable[..., Awaitable[Property]]:
    """Factory inserting a property owned by ``host_user``; keyword args override defaults."""

    async def _make(**overrides) -> Property:
        fields = {
            "owner_id": host_user.id,
            "title": "Test Villa",
            "property_type": "villa",
            "location": "Ubud, Bali",
            "max_guests": 4,
            "min_stay": 1,
            "max_stay": None,
            "instant_bookable": False,
            "cancellation_policy": "moderate",
            "base_price_per_night": Decimal("100.00"),
            "currency": "USD",
            "cleaning_fee": Decimal("0"),
            "service_fee": Decimal("0"),
            "taxes": Decimal("0"),
        }
        fields.update(overrides)
        prop = Property(**fields)
        db_session.add(prop)
        await db_session.flush()
        await db_session.refresh(prop)
        return prop

    return _make


@pytest_asyncio.fixture(loop_scope="session")
async def test_property(make_property) -> Property:
    """A default active, request-to-book property."""
    return await make_property()
