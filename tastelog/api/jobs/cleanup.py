"""
Scheduled cleanup of rows that only matter while fresh.

  user_sessions   -- removed once expired (expired sessions already fail auth)
  live_locations  -- removed when not updated for live_location_stale_minutes
                     (the client stopped without calling /api/location/clear)

Entry point: python -m tastelog.api.jobs.cleanup
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.config import settings
from tastelog.api.db.models import LiveLocation, UserSession

logger = logging.getLogger(__name__)


async def prune_expired_sessions(session: AsyncSession, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    result = await session.execute(delete(UserSession).where(UserSession.expires <= now))
    return result.rowcount or 0


async def prune_stale_live_locations(
    session: AsyncSession,
    max_age: timedelta,
    now: Optional[datetime] = None,
) -> int:
    now = now or datetime.now(timezone.utc)
    result = await session.execute(delete(LiveLocation).where(LiveLocation.updatedAt < now - max_age))
    return result.rowcount or 0


async def cleanup(session: AsyncSession, now: Optional[datetime] = None) -> dict[str, int]:
    """Run both prunes in one transaction."""
    now = now or datetime.now(timezone.utc)
    sessions = await prune_expired_sessions(session, now)
    live = await prune_stale_live_locations(
        session, timedelta(minutes=settings.live_location_stale_minutes), now
    )
    await session.commit()
    logger.info("cleanup_done expired_sessions=%d stale_live_locations=%d", sessions, live)
    return {"expiredSessions": sessions, "staleLiveLocations": live}


async def run_cleanup() -> dict[str, int]:
    """
    Scheduled job entry point.
    Connects to DB, prunes, disconnects.
    """
    from tastelog.api.db.engine import standalone_session

    async with standalone_session() as session:
        return await cleanup(session)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    asyncio.run(run_cleanup())
