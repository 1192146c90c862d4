"""Database connection and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pokerclock.config import get_settings

engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine_from_settings() -> AsyncEngine:
    settings = get_settings()
    kwargs = {"echo": False, "future": True, "pool_pre_ping": True}
    if not settings.database_url.startswith("sqlite"):
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_max_overflow
    return create_async_engine(settings.database_url, **kwargs)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(create_tables: bool = False) -> async_sessionmaker[AsyncSession]:
    """Initialize the engine, verify the connection and optionally create tables."""
    global engine, async_session_factory

    engine = create_engine_from_settings()
    async_session_factory = make_session_factory(engine)

    async with engine.begin() as conn:
        if create_tables:
            from pokerclock.models import Base

            await conn.run_sync(Base.metadata.create_all)
        else:
            await conn.run_sync(lambda _: None)
    return async_session_factory


async def close_db() -> None:
    """Close database connection pool."""
    global engine, async_session_factory
    if engine is not None:
        await engine.dispose()
    engine = None
    async_session_factory = None


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Context manager for a committed-or-rolled-back session.

    Usage:
        async with session_scope(factory) as session:
            result = await session.execute(...)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
