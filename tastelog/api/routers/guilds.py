"""
Guilds -- social groups with owner-approved membership.

Endpoints:
  GET    /api/guilds                                          -- all guilds, newest first, with memberCount (public)
  GET    /api/guilds/me                                       -- caller's guild status: NONE | PENDING | APPROVED
  GET    /api/guilds/{id}                                     -- one guild (public)
  GET    /api/guilds/{id}/members                             -- approved members (public)
  GET    /api/guilds/{id}/ranking                             -- top 3 by score + caller's rank (public)
  POST   /api/guilds                                          -- create; owner is auto-approved (201)
  POST   /api/guilds/{id}/join                                -- request membership (owner auto-approved)
  POST   /api/guilds/{id}/leave                               -- leave (owner cannot)
  GET    /api/guilds/{id}/pending                             -- pending requests (owner only)
  POST   /api/guilds/{id}/memberships/{membership_id}/approve -- owner only
  POST   /api/guilds/{id}/memberships/{membership_id}/reject  -- owner only; deletes the request
  PATCH  /api/guilds/{id}                                     -- update emblem/description/rules (owner only)
  POST   /api/guilds/{id}/disband                             -- delete guild + memberships + scores + missions (owner only)

Missions and mission records live in guild_missions.py under the same prefix.

Membership rules:
  - One membership row per (user, guild).
  - Joining again returns the existing row unchanged.
  - Approved members never exceed maxMembers; a full guild rejects
    new requests and approvals with 409 GUILD_FULL.
  - The owner is notified of each new join request; applicants are
    notified on approval.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.db.models import (
    MEMBERSHIP_APPROVED,
    MEMBERSHIP_PENDING,
    NOTIFICATION_JOIN_APPROVED,
    NOTIFICATION_JOIN_REQUEST,
    Guild,
    GuildMembership,
    GuildMission,
    GuildMissionRecord,
    GuildScore,
    Notification,
    User,
)
from tastelog.api.db.session import get_db
from tastelog.api.errors import api_error, bad_request, not_found
from tastelog.api.routers._auth_deps import get_current_user, require_user
from tastelog.api.routers.taste_records import decode_tags

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/guilds", tags=["guilds"])

DEFAULT_MAX_MEMBERS = 20
MIN_MAX_MEMBERS = 2
MAX_MAX_MEMBERS = 200
MAX_TAGS = 8
RANKING_TOP_N = 3


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class GuildCreate(BaseModel):
    name: str = ""
    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[list[Any]] = None
    rules: Optional[str] = None
    maxMembers: Optional[Any] = None
    emblemUrl: Optional[str] = None


class GuildUpdate(BaseModel):
    emblemUrl: Optional[str] = None
    description: Optional[str] = None
    rules: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_tags(tags: list[Any] | None) -> list[str]:
    """Stringify, trim, drop empties, keep at most MAX_TAGS."""
    if not tags:
        return []
    cleaned = [str(t).strip() for t in tags if t is not None]
    return [t for t in cleaned if t][:MAX_TAGS]


def clamp_max_members(value: Any) -> int:
    """Integer in [MIN_MAX_MEMBERS, MAX_MAX_MEMBERS]; unparseable -> default."""
    if value is None or value == "" or isinstance(value, bool):
        return DEFAULT_MAX_MEMBERS
    try:
        num = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_MAX_MEMBERS
    return min(max(num, MIN_MAX_MEMBERS), MAX_MAX_MEMBERS)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def serialize_guild(guild: Guild, member_count: int | None = None) -> dict:
    data = {
        "id": guild.id,
        "name": guild.name,
        "description": guild.description,
        "category": guild.category,
        "tags": decode_tags(guild.tagsJson),
        "rules": guild.rules,
        "maxMembers": guild.maxMembers if isinstance(guild.maxMembers, int) else DEFAULT_MAX_MEMBERS,
        "emblemUrl": guild.emblemUrl,
        "ownerId": guild.ownerId,
        "createdAt": _iso(guild.createdAt),
    }
    if member_count is not None:
        data["memberCount"] = member_count
    return data


def serialize_membership(membership: GuildMembership) -> dict:
    return {
        "id": membership.id,
        "userId": membership.userId,
        "guildId": membership.guildId,
        "status": membership.status,
        "createdAt": _iso(membership.createdAt),
    }


def rank_members(rows: list[tuple], current_user_id: str | None) -> dict:
    """
    rows: (userId, name, email, score|None) for approved members.
    Ordered by score desc, then display name; ranks are 1-based.
    """
    entries = [
        {
            "userId": user_id,
            "userName": name,
            "userEmail": email,
            "score": int(score or 0),
        }
        for user_id, name, email, score in rows
    ]
    entries.sort(key=lambda e: (-e["score"], (e["userName"] or e["userEmail"] or "").lower()))
    for i, entry in enumerate(entries):
        entry["rank"] = i + 1

    my_rank = None
    if current_user_id:
        my_rank = next((e for e in entries if e["userId"] == current_user_id), None)
    return {"myRank": my_rank, "top3": entries[:RANKING_TOP_N]}


async def get_guild_or_404(session: AsyncSession, guild_id: str) -> Guild:
    result = await session.execute(select(Guild).where(Guild.id == guild_id))
    guild = result.scalars().first()
    if guild is None:
        raise not_found("Guild not found.")
    return guild


def require_owner(guild: Guild, user: User) -> None:
    if guild.ownerId != user.id:
        raise api_error(403, "NOT_OWNER", "Only the guild owner can do this.")


async def approved_count(session: AsyncSession, guild_id: str) -> int:
    stmt = select(func.count(GuildMembership.id)).where(
        and_(
            GuildMembership.guildId == guild_id,
            GuildMembership.status == MEMBERSHIP_APPROVED,
        )
    )
    result = await session.execute(stmt)
    return int(result.scalar() or 0)


async def _find_membership(session: AsyncSession, user_id: str, guild_id: str) -> GuildMembership | None:
    result = await session.execute(
        select(GuildMembership).where(
            and_(
                GuildMembership.userId == user_id,
                GuildMembership.guildId == guild_id,
            )
        )
    )
    return result.scalars().first()


async def find_approved_membership(session: AsyncSession, user_id: str, guild_id: str) -> GuildMembership | None:
    membership = await _find_membership(session, user_id, guild_id)
    if membership is None or membership.status != MEMBERSHIP_APPROVED:
        return None
    return membership


def _notify(
    session: AsyncSession,
    *,
    user_id: str,
    type_: str,
    guild_id: str,
    from_user_id: str | None,
    content: str,
) -> None:
    session.add(
        Notification(
            id=str(uuid.uuid4()),
            userId=user_id,
            type=type_,
            guildId=guild_id,
            fromUserId=from_user_id,
            content=content,
            isRead=False,
            createdAt=datetime.now(timezone.utc),
        )
    )


# ---------------------------------------------------------------------------
# Endpoints -- reads
# ---------------------------------------------------------------------------


@router.get("")
async def list_guilds(session: AsyncSession = Depends(get_db)) -> dict:
    member_join = and_(
        GuildMembership.guildId == Guild.id,
        GuildMembership.status == MEMBERSHIP_APPROVED,
    )
    stmt = (
        select(Guild, func.count(GuildMembership.id))
        .outerjoin(GuildMembership, member_join)
        .group_by(Guild.id)
        .order_by(Guild.createdAt.desc())
    )
    result = await session.execute(stmt)
    return {
        "ok": True,
        "guilds": [serialize_guild(g, int(count)) for g, count in result.all()],
    }


@router.get("/me")
async def my_guild_status(
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    stmt = (
        select(GuildMembership, Guild)
        .join(Guild, Guild.id == GuildMembership.guildId)
        .where(GuildMembership.userId == user.id)
        .order_by(GuildMembership.createdAt.desc())
    )
    result = await session.execute(stmt)
    rows = result.all()

    for status in (MEMBERSHIP_APPROVED, MEMBERSHIP_PENDING):
        for membership, guild in rows:
            if membership.status == status:
                return {"ok": True, "status": status, "guild": serialize_guild(guild)}
    return {"ok": True, "status": "NONE", "guild": None}


@router.get("/{guild_id}")
async def get_guild(guild_id: str, session: AsyncSession = Depends(get_db)) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    count = await approved_count(session, guild_id)
    return {"ok": True, "guild": serialize_guild(guild, count)}


@router.get("/{guild_id}/members")
async def list_members(guild_id: str, session: AsyncSession = Depends(get_db)) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    stmt = (
        select(GuildMembership, User)
        .join(User, User.id == GuildMembership.userId)
        .where(
            and_(
                GuildMembership.guildId == guild_id,
                GuildMembership.status == MEMBERSHIP_APPROVED,
            )
        )
        .order_by(GuildMembership.createdAt.asc())
    )
    result = await session.execute(stmt)
    members = [
        {
            "id": membership.id,
            "userId": member.id,
            "userName": member.name,
            "userEmail": member.email,
            "isOwner": member.id == guild.ownerId,
        }
        for membership, member in result.all()
    ]
    return {"ok": True, "members": members}


@router.get("/{guild_id}/ranking")
async def guild_ranking(
    guild_id: str,
    user: User | None = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    await get_guild_or_404(session, guild_id)
    score_join = and_(
        GuildScore.userId == GuildMembership.userId,
        GuildScore.guildId == GuildMembership.guildId,
    )
    stmt = (
        select(GuildMembership.userId, User.name, User.email, GuildScore.score)
        .join(User, User.id == GuildMembership.userId)
        .outerjoin(GuildScore, score_join)
        .where(
            and_(
                GuildMembership.guildId == guild_id,
                GuildMembership.status == MEMBERSHIP_APPROVED,
            )
        )
    )
    result = await session.execute(stmt)
    ranking = rank_members(list(result.all()), user.id if user else None)
    return {"ok": True, **ranking}


# ---------------------------------------------------------------------------
# Endpoints -- create / join / leave
# ---------------------------------------------------------------------------


@router.post("", status_code=201)
async def create_guild(
    body: GuildCreate,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    name = body.name.strip()
    if not name:
        raise bad_request("name is required.")

    now = datetime.now(timezone.utc)
    tags = normalize_tags(body.tags)
    guild = Guild(
        id=str(uuid.uuid4()),
        name=name,
        description=body.description,
        category=body.category,
        tagsJson=json.dumps(tags, ensure_ascii=False) if tags else None,
        rules=body.rules,
        maxMembers=clamp_max_members(body.maxMembers),
        emblemUrl=body.emblemUrl,
        ownerId=user.id,
        createdAt=now,
        updatedAt=now,
    )
    session.add(guild)
    session.add(
        GuildMembership(
            id=str(uuid.uuid4()),
            userId=user.id,
            guildId=guild.id,
            status=MEMBERSHIP_APPROVED,
            createdAt=now,
        )
    )
    await session.commit()

    logger.info("guild_created guild_id=%s owner_id=%s max_members=%d", guild.id, user.id, guild.maxMembers)
    return {"ok": True, "guild": serialize_guild(guild, 1)}


@router.post("/{guild_id}/join")
async def join_guild(
    guild_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    guild = await get_guild_or_404(session, guild_id)

    existing = await _find_membership(session, user.id, guild_id)
    if existing is not None:
        return {"ok": True, "membership": serialize_membership(existing)}

    is_owner = guild.ownerId == user.id
    if not is_owner and await approved_count(session, guild_id) >= guild.maxMembers:
        raise api_error(409, "GUILD_FULL", "This guild has no open slots.")

    membership = GuildMembership(
        id=str(uuid.uuid4()),
        userId=user.id,
        guildId=guild_id,
        status=MEMBERSHIP_APPROVED if is_owner else MEMBERSHIP_PENDING,
        createdAt=datetime.now(timezone.utc),
    )
    session.add(membership)
    if not is_owner:
        _notify(
            session,
            user_id=guild.ownerId,
            type_=NOTIFICATION_JOIN_REQUEST,
            guild_id=guild_id,
            from_user_id=user.id,
            content=f"{user.name or user.email} asked to join {guild.name}.",
        )
    try:
        await session.commit()
    except IntegrityError:
        # A concurrent join for the same (user, guild) won the unique constraint
        await session.rollback()
        existing = await _find_membership(session, user.id, guild_id)
        if existing is None:
            raise
        logger.info("guild_join_raced guild_id=%s user_id=%s", guild_id, user.id)
        return {"ok": True, "membership": serialize_membership(existing)}

    logger.info("guild_join guild_id=%s user_id=%s status=%s", guild_id, user.id, membership.status)
    return {"ok": True, "membership": serialize_membership(membership)}


@router.post("/{guild_id}/leave")
async def leave_guild(
    guild_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    if guild.ownerId == user.id:
        raise api_error(400, "OWNER_CANNOT_LEAVE", "The owner cannot leave; disband the guild instead.")

    result = await session.execute(
        delete(GuildMembership).where(
            and_(
                GuildMembership.userId == user.id,
                GuildMembership.guildId == guild_id,
            )
        )
    )
    if result.rowcount == 0:
        raise not_found("Not a member of this guild.")
    await session.execute(
        delete(GuildScore).where(
            and_(GuildScore.userId == user.id, GuildScore.guildId == guild_id)
        )
    )
    await session.commit()

    logger.info("guild_leave guild_id=%s user_id=%s", guild_id, user.id)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Endpoints -- owner actions
# ---------------------------------------------------------------------------


@router.get("/{guild_id}/pending")
async def list_pending(
    guild_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    require_owner(guild, user)

    stmt = (
        select(GuildMembership, User)
        .join(User, User.id == GuildMembership.userId)
        .where(
            and_(
                GuildMembership.guildId == guild_id,
                GuildMembership.status == MEMBERSHIP_PENDING,
            )
        )
        .order_by(GuildMembership.createdAt.desc())
    )
    result = await session.execute(stmt)
    pending = [
        {
            "id": membership.id,
            "userId": applicant.id,
            "userName": applicant.name,
            "userEmail": applicant.email,
            "createdAt": _iso(membership.createdAt),
        }
        for membership, applicant in result.all()
    ]
    return {"ok": True, "pending": pending}


async def _get_membership_or_404(session: AsyncSession, guild_id: str, membership_id: str) -> GuildMembership:
    result = await session.execute(
        select(GuildMembership).where(
            and_(
                GuildMembership.id == membership_id,
                GuildMembership.guildId == guild_id,
            )
        )
    )
    membership = result.scalars().first()
    if membership is None:
        raise not_found("Membership request not found.")
    return membership


@router.post("/{guild_id}/memberships/{membership_id}/approve")
async def approve_membership(
    guild_id: str,
    membership_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    require_owner(guild, user)
    membership = await _get_membership_or_404(session, guild_id, membership_id)

    if membership.status != MEMBERSHIP_APPROVED:
        if await approved_count(session, guild_id) >= guild.maxMembers:
            raise api_error(409, "GUILD_FULL", "This guild has no open slots.")
        membership.status = MEMBERSHIP_APPROVED
        _notify(
            session,
            user_id=membership.userId,
            type_=NOTIFICATION_JOIN_APPROVED,
            guild_id=guild_id,
            from_user_id=user.id,
            content=f"Your request to join {guild.name} was approved.",
        )
        await session.commit()
        logger.info("guild_membership_approved guild_id=%s membership_id=%s", guild_id, membership_id)

    return {"ok": True, "membership": serialize_membership(membership)}


@router.post("/{guild_id}/memberships/{membership_id}/reject")
async def reject_membership(
    guild_id: str,
    membership_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    require_owner(guild, user)
    membership = await _get_membership_or_404(session, guild_id, membership_id)
    if membership.userId == guild.ownerId:
        raise bad_request("The owner's membership cannot be rejected.")

    await session.execute(delete(GuildMembership).where(GuildMembership.id == membership.id))
    await session.commit()

    logger.info("guild_membership_rejected guild_id=%s membership_id=%s", guild_id, membership_id)
    return {"ok": True}


@router.patch("/{guild_id}")
async def update_guild(
    guild_id: str,
    body: GuildUpdate,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    require_owner(guild, user)

    for field in body.model_fields_set:
        setattr(guild, field, getattr(body, field))
    guild.updatedAt = datetime.now(timezone.utc)
    await session.commit()

    return {"ok": True, "guild": serialize_guild(guild)}


@router.post("/{guild_id}/disband")
async def disband_guild(
    guild_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    guild = await get_guild_or_404(session, guild_id)
    require_owner(guild, user)

    await session.execute(delete(GuildMissionRecord).where(GuildMissionRecord.guildId == guild_id))
    await session.execute(delete(GuildMission).where(GuildMission.guildId == guild_id))
    await session.execute(delete(GuildMembership).where(GuildMembership.guildId == guild_id))
    await session.execute(delete(GuildScore).where(GuildScore.guildId == guild_id))
    await session.execute(delete(Guild).where(Guild.id == guild_id))
    await session.commit()

    logger.info("guild_disbanded guild_id=%s owner_id=%s", guild_id, user.id)
    return {"ok": True}
