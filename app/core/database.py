from typing import AsyncGenerator
import uuid

from sqlalchemy import Column, String, event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.clock import utc_now
from app.core.config import settings
from app.core.types import UTCDateTime


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Declarative base; every table gets a string UUID key and timestamps"""

    id = Column(String(36), primary_key=True, default=new_id)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False)


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """
    SQLite: take the write lock when a transaction begins.

    With the driver's deferred BEGIN, two connections that both read and
    then write can deadlock and fail with "database is locked" instead of
    waiting for each other.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(database_url: str = settings.DATABASE_URL) -> AsyncEngine:
    engine = create_async_engine(database_url, echo=settings.DATABASE_ECHO, future=True)
    if engine.dialect.name == "sqlite":
        _use_immediate_transactions(engine)
    return engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False, autoflush=False)


engine = create_engine()
AsyncSessionLocal = create_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create all tables registered on Base.metadata"""
    # Import models so they register on Base.metadata
    import app.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
