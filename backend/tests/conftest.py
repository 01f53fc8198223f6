"""
Test Configuration: Fixtures for async DB, cache, pipeline and test client.

Each test gets its own SQLite file database (tmp_path), so sessions opened by
the pipeline and by the test body see the same committed data.
"""

from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from settlement import models  # noqa: F401
from settlement.api.deps import get_pipeline
from settlement.config import Settings
from settlement.database import Base, get_db
from settlement.main import app
from settlement.models import ArrivalDataDetail, PendingSettlementDetail
from settlement.services.cache_store import MemoryCacheStore
from settlement.services.pipeline import KeyedLocks, SettlementPipeline

NOW = datetime(2024, 6, 15, 12, 0, 0)


def fixed_clock():
    return NOW


@pytest.fixture
def test_settings():
    return Settings(settlement_concurrency=1, enable_settlement_worker=False)


@pytest.fixture
async def test_engine(tmp_path):
    """Create a per-test SQLite database and build all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def cache():
    return MemoryCacheStore()


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def pipeline(session_maker, cache, test_settings, locks):
    return SettlementPipeline(
        session_maker,
        cache=cache,
        settings=test_settings,
        locks=locks,
        clock=fixed_clock,
    )


@pytest.fixture
def add_pending(session_maker):
    """Insert raw pending rows and commit."""

    async def _add(*rows):
        async with session_maker() as db:
            for row in rows:
                data = {"mall_name": "测试店铺", "currency": "CNY", "updated_time": NOW}
                data.update(row)
                db.add(PendingSettlementDetail(**data))
            await db.commit()

    return _add


@pytest.fixture
def add_arrival(session_maker):
    """Insert raw arrival rows and commit."""

    async def _add(*rows):
        async with session_maker() as db:
            for row in rows:
                data = {"mall_name": "测试店铺", "currency": "CNY", "updated_time": NOW}
                data.update(row)
                db.add(ArrivalDataDetail(**data))
            await db.commit()

    return _add


@pytest.fixture
async def client(session_maker, cache, locks, test_settings):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        async with session_maker() as session:
            yield session

    def override_get_pipeline():
        return SettlementPipeline(
            session_maker, cache=cache, settings=test_settings, locks=locks, clock=fixed_clock
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pipeline] = override_get_pipeline
    app.state.cache_store = cache
    app.state.settlement_locks = locks
    app.state.session_maker = session_maker

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
