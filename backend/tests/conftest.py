"""
Shared fixtures.

Every test gets its own in-memory SQLite database with the full schema.
API tests talk to the FastAPI app through httpx with the database and
service-auth dependencies overridden.
"""

import os
import uuid

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")

import httpx
import pytest
import pytest_asyncio

import identity.models  # noqa: F401  (registers contact tables)
from database import Base, build_engine, build_session_factory, get_db
from middleware.internal_auth import InternalService, require_internal_service

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def engine():
    engine = build_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def agency_id():
    return uuid.uuid4()


@pytest.fixture
def other_agency_id():
    return uuid.uuid4()


def _override_db(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session
    return override_get_db


@pytest_asyncio.fixture
async def client(session_factory):
    """API client authenticated as an internal service."""
    from server import app

    async def override_service():
        return InternalService(name="test-suite", api_key_hash="...test-key")

    app.dependency_overrides[get_db] = _override_db(session_factory)
    app.dependency_overrides[require_internal_service] = override_service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def unauthenticated_client(session_factory):
    """API client with the real service-auth dependency."""
    from server import app

    app.dependency_overrides[get_db] = _override_db(session_factory)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
