"""
Shared fixtures.

Tests run against a temporary SQLite file through aiosqlite; the
environment is set before anything imports app.config.
"""
import os
import tempfile
import uuid

_DB_DIR = tempfile.mkdtemp(prefix="count-audit-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RECONCILE_LOCK_RETRY_DELAY_MS"] = "10"

import httpx
import pytest

from app.database import Base, async_session_factory, engine


@pytest.fixture(autouse=True)
async def reset_database():
    """Fresh schema for every test."""
    from app import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def admin_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
async def client():
    from app.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
