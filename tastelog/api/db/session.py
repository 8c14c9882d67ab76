"""
get_db -- per-request AsyncSession from app.state.db_session_factory.

The factory is built in lifespan with expire_on_commit=False; routers read
model attributes after commit when building responses.
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tastelog.api.errors import api_error


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    factory: async_sessionmaker | None = getattr(request.app.state, "db_session_factory", None)
    if factory is None:
        raise api_error(503, "DB_UNAVAILABLE", "Database unavailable.")
    async with factory() as session:
        yield session
