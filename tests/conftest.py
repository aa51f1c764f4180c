import os
import sys

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# Add the app directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.core.database import Base, create_engine_for, get_db, session_factory
from app.main import app

# PostgreSQL exercises the row locks; SQLite in memory is the zero-setup default
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest.fixture
async def db_engine():
    engine = create_engine_for(TEST_DATABASE_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)  # Clean slate
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db(db_engine):
    """Create a fresh database session for each test."""
    async with session_factory(db_engine)() as session:
        yield session


@pytest.fixture(autouse=True)
def override_get_db(db: AsyncSession):
    """Override the get_db dependency to use test database."""

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def client():
    """Create test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


# Test Authentication Utilities
def get_auth_headers(user_id: str, role: str = "client") -> dict[str, str]:
    """
    Generate identity headers for tests.

    The gateway normally sets these after verifying the caller.
    """
    return {"X-User-Id": user_id, "X-User-Role": role}


# Import all catalog fixtures to make them available
pytest_plugins = ["tests.fixtures.catalog_fixtures"]
