"""
Pytest configuration and fixtures.
"""

import os

# Settings are read at import time; the signing key is mandatory.
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("SLA_SWEEP_ENABLED", "false")
os.environ.setdefault("BUSINESS_TIMEZONE", "UTC")

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.core.database import Base, get_db
from backend.app.core.security import Role, create_access_token
from backend.app.events import bus as bus_module
from backend.app import models  # noqa: F401  (registers every table with Base)
from backend.app.services import family_service

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FAMILY_ID = "fam-1"


@pytest.fixture
async def test_engine():
    """One in-memory database per test, schema created up front."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Returns the session factory for testing."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def session_context(session_factory) -> Callable:
    """Commit-on-exit session scope, shaped like get_db_context."""
    @asynccontextmanager
    async def _context():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    return _context


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session on the per-test database."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def event_bus():
    """A fresh global event bus, reset after the test."""
    bus = bus_module.initialize_event_bus(maxsize=1000)
    yield bus
    bus_module._event_bus = None


@pytest.fixture
async def family(db_session: AsyncSession) -> str:
    """Family group with alice (owner), bob and carol; dave belongs to another family."""
    await family_service.add_member(db_session, FAMILY_ID, "alice", role="owner")
    await family_service.add_member(db_session, FAMILY_ID, "bob")
    await family_service.add_member(db_session, FAMILY_ID, "carol")
    await family_service.add_member(db_session, "fam-2", "dave", role="owner")
    await db_session.commit()
    return FAMILY_ID


@pytest.fixture
def auth_headers() -> Callable[..., dict]:
    """Build bearer headers for a user id and role."""
    def _headers(user_id: str, role: str = Role.MEMBER) -> dict:
        token = create_access_token({"sub": user_id, "role": role})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession, event_bus) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client with database dependency overridden.

    Each request commits (or rolls back) the shared test session, so change
    events publish exactly as they do in production.
    """
    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
