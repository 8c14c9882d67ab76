"""
Guild missions -- owner-posted challenges that members complete by filing a
record. Each record earns the member MISSION_RECORD_POINTS on the guild
ranking.

Endpoints (all require a session):
  POST   /api/guilds/{id}/missions                       -- create (owner only, 201)
  GET    /api/guilds/{id}/missions                       -- open missions (participantCount < limitCount)
  GET    /api/guilds/{id}/missions/completed             -- full missions (participantCount >= limitCount)
  DELETE /api/guilds/{id}/missions/{mission_id}          -- delete mission + its records (owner only)
  GET    /api/guilds/{id}/missions/{mission_id}/records  -- records, newest first
  POST   /api/guilds/{id}/missions/{mission_id}/records  -- file a record (approved members, 201)

Participation rules:
  - One record per (mission, member); a second gets 409 ALREADY_PARTICIPATED.
  - A mission stops taking records once limitCount members have filed;
    later attempts get 409 MISSION_FULL.
  - The record insert and the score increment commit together.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import and_, delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.db.models import GuildMission, GuildMissionRecord, GuildScore, User
from tastelog.api.db.session import get_db
from tastelog.api.errors import api_error, bad_request, not_found
from tastelog.api.routers._auth_deps import require_user
from tastelog.api.routers.guilds import (
    MAX_MAX_MEMBERS,
    find_approved_membership,
    get_guild_or_404,
    require_owner,
)
from tastelog.api.routers.taste_records import decode_tags, encode_tags

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/guilds", tags=["guild-missions"])

MISSION_RECORD_POINTS = 50


class MissionCreate(BaseModel):
    title: str = ""
    content: Optional[str] = None
    limitCount: Any = None
    difficulty: Optional[str] = None
    mainImage: Optional[str] = None
    extraImages: Optional[list[str]] = None


class MissionRecordCreate(BaseModel):
    title: str = ""
    desc: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    mainImage: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_limit_count(value: Any) -> int | None:
    """Whole number in [1, MAX_MAX_MEMBERS]; anything else -> None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not num.is_integer() or not 1 <= num <= MAX_MAX_MEMBERS:
        return None
    return int(num)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def serialize_mission(mission: GuildMission, participant_count: int) -> dict:
    return {
        "id": mission.id,
        "guildId": mission.guildId,
        "title": mission.title,
        "content": mission.content,
        "limitCount": mission.limitCount,
        "difficulty": mission.difficulty,
        "mainImage": mission.mainImage,
        "extraImages": decode_tags(mission.extraImagesJson),
        "participantCount": participant_count,
        "isCompleted": participant_count >= mission.limitCount,
        "createdAt": _iso(mission.createdAt),
    }


def serialize_mission_record(record: GuildMissionRecord, author: User | None = None) -> dict:
    data = {
        "id": record.id,
        "missionId": record.missionId,
        "guildId": record.guildId,
        "userId": record.userId,
        "title": record.title,
        "desc": record.desc or "",
        "content": record.content or "",
        "category": record.category,
        "rating": record.rating,
        "mainImage": record.mainImage,
        "createdAt": _iso(record.createdAt),
    }
    if author is not None:
        data["userName"] = author.name or author.email
    return data


async def _get_mission_or_404(session: AsyncSession, guild_id: str, mission_id: str) -> GuildMission:
    result = await session.execute(
        select(GuildMission).where(
            and_(GuildMission.id == mission_id, GuildMission.guildId == guild_id)
        )
    )
    mission = result.scalars().first()
    if mission is None:
        raise not_found("Mission not found.")
    return mission


async def _participant_count(session: AsyncSession, mission_id: str) -> int:
    result = await session.execute(
        select(func.count(GuildMissionRecord.id)).where(GuildMissionRecord.missionId == mission_id)
    )
    return int(result.scalar() or 0)


async def _list_missions(session: AsyncSession, guild_id: str, *, completed: bool) -> list[dict]:
    participants = func.count(GuildMissionRecord.id)
    stmt = (
        select(GuildMission, participants)
        .outerjoin(GuildMissionRecord, GuildMissionRecord.missionId == GuildMission.id)
        .where(GuildMission.guildId == guild_id)
        .group_by(GuildMission.id)
        .having(participants >= GuildMission.limitCount if completed else participants < GuildMission.limitCount)
        .order_by(GuildMission.createdAt.desc())
    )
    result = await session.execute(stmt)
    return [serialize_mission(m, int(count)) for m, count in result.all()]


async def award_guild_points(session: AsyncSession, user_id: str, guild_id: str, points: int) -> None:
    """Add points to the member's guild score, creating the row on first award. Caller commits."""
    now = datetime.now(timezone.utc)
    stmt = (
        pg_insert(GuildScore)
        .values(id=str(uuid.uuid4()), userId=user_id, guildId=guild_id, score=points, updatedAt=now)
        .on_conflict_do_update(
            constraint="uq_guild_score_user_guild",
            set_={"score": GuildScore.score + points, "updatedAt": now},
        )
    )
    await session.execute(stmt)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/{guild_id}/missions", status_code=201)
async def create_mission(
    guild_id: str,
    body: MissionCreate,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    require_owner(guild, user)

    title = body.title.strip()
    if not title:
        raise bad_request("title is required.")
    limit_count = parse_limit_count(body.limitCount)
    if limit_count is None:
        raise bad_request(f"limitCount must be a whole number from 1 to {MAX_MAX_MEMBERS}.")

    now = datetime.now(timezone.utc)
    mission = GuildMission(
        id=str(uuid.uuid4()),
        guildId=guild_id,
        title=title,
        content=body.content or None,
        limitCount=limit_count,
        difficulty=body.difficulty or None,
        mainImage=body.mainImage or None,
        extraImagesJson=encode_tags(body.extraImages or []),
        createdAt=now,
        updatedAt=now,
    )
    session.add(mission)
    await session.commit()

    logger.info("guild_mission_created guild_id=%s mission_id=%s limit=%d", guild_id, mission.id, limit_count)
    return {"ok": True, "mission": serialize_mission(mission, 0)}


@router.get("/{guild_id}/missions")
async def list_open_missions(
    guild_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    await get_guild_or_404(session, guild_id)
    return {"ok": True, "missions": await _list_missions(session, guild_id, completed=False)}


@router.get("/{guild_id}/missions/completed")
async def list_completed_missions(
    guild_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    await get_guild_or_404(session, guild_id)
    return {"ok": True, "missions": await _list_missions(session, guild_id, completed=True)}


@router.delete("/{guild_id}/missions/{mission_id}")
async def delete_mission(
    guild_id: str,
    mission_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    require_owner(guild, user)
    await _get_mission_or_404(session, guild_id, mission_id)

    await session.execute(delete(GuildMissionRecord).where(GuildMissionRecord.missionId == mission_id))
    await session.execute(delete(GuildMission).where(GuildMission.id == mission_id))
    await session.commit()

    logger.info("guild_mission_deleted guild_id=%s mission_id=%s", guild_id, mission_id)
    return {"ok": True}


@router.get("/{guild_id}/missions/{mission_id}/records")
async def list_mission_records(
    guild_id: str,
    mission_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    await _get_mission_or_404(session, guild_id, mission_id)
    stmt = (
        select(GuildMissionRecord, User)
        .join(User, User.id == GuildMissionRecord.userId)
        .where(GuildMissionRecord.missionId == mission_id)
        .order_by(GuildMissionRecord.createdAt.desc())
    )
    result = await session.execute(stmt)
    return {
        "ok": True,
        "records": [serialize_mission_record(r, author) for r, author in result.all()],
    }


@router.post("/{guild_id}/missions/{mission_id}/records", status_code=201)
async def create_mission_record(
    guild_id: str,
    mission_id: str,
    body: MissionRecordCreate,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    title = body.title.strip()
    if not title:
        raise bad_request("title is required.")

    await get_guild_or_404(session, guild_id)
    if await find_approved_membership(session, user.id, guild_id) is None:
        raise api_error(403, "NOT_MEMBER", "Only guild members can take part in missions.")
    mission = await _get_mission_or_404(session, guild_id, mission_id)

    if await _participant_count(session, mission_id) >= mission.limitCount:
        raise api_error(409, "MISSION_FULL", "This mission is already complete.")
    existing = await session.execute(
        select(GuildMissionRecord).where(
            and_(GuildMissionRecord.missionId == mission_id, GuildMissionRecord.userId == user.id)
        )
    )
    if existing.scalars().first() is not None:
        raise api_error(409, "ALREADY_PARTICIPATED", "You already took part in this mission.")

    record = GuildMissionRecord(
        id=str(uuid.uuid4()),
        missionId=mission_id,
        guildId=guild_id,
        userId=user.id,
        title=title,
        desc=body.desc or None,
        content=body.content or None,
        category=body.category or None,
        rating=body.rating,
        mainImage=body.mainImage or None,
        createdAt=datetime.now(timezone.utc),
    )
    session.add(record)
    await award_guild_points(session, user.id, guild_id, MISSION_RECORD_POINTS)
    try:
        await session.commit()
    except IntegrityError:
        # Concurrent record by the same member
        await session.rollback()
        raise api_error(409, "ALREADY_PARTICIPATED", "You already took part in this mission.")

    logger.info(
        "guild_mission_record user_id=%s guild_id=%s mission_id=%s points=%d",
        user.id, guild_id, mission_id, MISSION_RECORD_POINTS,
    )
    return {
        "ok": True,
        "record": serialize_mission_record(record),
        "pointsAwarded": MISSION_RECORD_POINTS,
    }
