"""
Async engine for DATABASE_URL (asyncpg driver, NullPool) and a standalone
session for jobs that run outside the app.
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from tastelog.api.config import settings


def _async_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine() -> AsyncEngine:
    """Create the async engine for the configured DATABASE_URL."""
    return create_async_engine(
        _async_url(settings.database_url),
        poolclass=NullPool,
        echo=settings.debug and settings.environment == "development",
    )


async def create_all(engine: AsyncEngine) -> None:
    """Create any missing tables. Local development only (DB_CREATE_ALL)."""
    from tastelog.api.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def standalone_session():
    """One session on a private engine; the engine is disposed on exit."""
    engine = create_engine()
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()
