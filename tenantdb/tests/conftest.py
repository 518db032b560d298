from __future__ import annotations

import os

# Point the module-level engine at SQLite before anything imports it.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tenantdb.core.config import get_settings
from tenantdb.domain.models import Base
from tenantdb.tests.utils.fakes import FakeRdsClient


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def session_factory():
    # One shared in-memory connection so every session sees the same tables.
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def rds_client() -> FakeRdsClient:
    return FakeRdsClient()
