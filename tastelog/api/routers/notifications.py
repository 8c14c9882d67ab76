"""
Guild notifications for the caller.

Endpoints:
  GET    /api/guilds/notifications                   -- newest first
  GET    /api/guilds/notifications/unread-count
  PATCH  /api/guilds/notifications/{id}/read
  PATCH  /api/guilds/notifications/read-all

Mounted before the guilds router so "notifications" is never read as a guild id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.db.models import Notification, User
from tastelog.api.db.session import get_db
from tastelog.api.errors import not_found
from tastelog.api.routers._auth_deps import require_user

router = APIRouter(prefix="/api/guilds/notifications", tags=["notifications"])


def serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "guildId": n.guildId,
        "fromUserId": n.fromUserId,
        "content": n.content,
        "isRead": bool(n.isRead),
        "createdAt": n.createdAt.isoformat() if n.createdAt else None,
    }


@router.get("")
async def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    stmt = (
        select(Notification)
        .where(Notification.userId == user.id)
        .order_by(Notification.createdAt.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return {"ok": True, "notifications": [serialize_notification(n) for n in result.scalars().all()]}


@router.get("/unread-count")
async def unread_count(
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    stmt = select(func.count(Notification.id)).where(
        and_(Notification.userId == user.id, Notification.isRead.is_(False))
    )
    result = await session.execute(stmt)
    return {"ok": True, "count": int(result.scalar() or 0)}


@router.patch("/read-all")
async def mark_all_read(
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    result = await session.execute(
        update(Notification)
        .where(and_(Notification.userId == user.id, Notification.isRead.is_(False)))
        .values(isRead=True)
    )
    await session.commit()
    return {"ok": True, "updated": result.rowcount}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    result = await session.execute(
        update(Notification)
        .where(and_(Notification.id == notification_id, Notification.userId == user.id))
        .values(isRead=True)
    )
    if result.rowcount == 0:
        raise not_found("Notification not found.")
    await session.commit()
    return {"ok": True}
