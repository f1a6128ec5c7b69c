"""
Shared fixtures: a throwaway on-disk SQLite database per test, a frozen
clock and settings tuned for the tests.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from app.core.config import Settings
from app.core.database import Base, create_engine, create_session_factory
from tests.factories import FrozenClock


@pytest.fixture
def clock():
    # Wednesday afternoon, about two weeks before the US spring-forward change
    return FrozenClock(datetime(2026, 2, 25, 15, 30, tzinfo=timezone.utc))


@pytest.fixture
def test_settings():
    return Settings(
        HOLD_DURATION_MINUTES=10,
        SYNC_HORIZON_DAYS=21,
        SLOT_DURATION_MINUTES=60,
        DEFAULT_TIMEZONE="UTC",
        BOOKING_MODE="hold_then_book",
        BOOKING_INITIAL_STATUS="pending_payment",
    )


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
