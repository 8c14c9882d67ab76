"""
SQLAlchemy DeclarativeBase models.

Column names use camelCase to match the PostgreSQL column names the web
client and existing migrations use. Ids are string UUIDs.

Routers set id/createdAt explicitly when inserting so that the values are
available before flush (and under the test session mock).
"""

import uuid as _uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Membership states. PENDING waits for the guild owner's approval.
MEMBERSHIP_PENDING = "PENDING"
MEMBERSHIP_APPROVED = "APPROVED"

# Notification types
NOTIFICATION_JOIN_REQUEST = "GUILD_JOIN_REQUEST"
NOTIFICATION_JOIN_APPROVED = "GUILD_JOIN_APPROVED"


def _new_id() -> str:
    return str(_uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    passwordHash: Mapped[str] = mapped_column(String)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class UserSession(Base):
    """Opaque cookie session. The token is the cookie value."""

    __tablename__ = "user_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    sessionToken: Mapped[str] = mapped_column(String, unique=True)
    userId: Mapped[str] = mapped_column(String, index=True)
    expires: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Stay(Base):
    __tablename__ = "stays"
    __table_args__ = (Index("ix_stays_user_start", "userId", "startTime"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    userId: Mapped[str] = mapped_column(String)
    lat: Mapped[float] = mapped_column(Float)
    lng: Mapped[float] = mapped_column(Float)
    startTime: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    endTime: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    # Set by Kakao Local tagging once the stay is long enough
    kakaoPlaceId: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    categoryName: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    categoryGroupCode: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    mappedCategory: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class LiveLocation(Base):
    """Latest known position per user. One row per user."""

    __tablename__ = "live_locations"

    userId: Mapped[str] = mapped_column(String, primary_key=True)
    lat: Mapped[float] = mapped_column(Float)
    lng: Mapped[float] = mapped_column(Float)
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class TasteRecord(Base):
    __tablename__ = "taste_records"
    __table_args__ = (Index("ix_taste_records_user_created", "userId", "createdAt"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    userId: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String)
    desc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String)
    # JSON-encoded list[str]
    tagsJson: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumb: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Guild(Base):
    __tablename__ = "guilds"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    tagsJson: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rules: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    maxMembers: Mapped[int] = mapped_column(Integer, default=20)
    emblemUrl: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    ownerId: Mapped[str] = mapped_column(String, index=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class GuildMembership(Base):
    __tablename__ = "guild_memberships"
    __table_args__ = (UniqueConstraint("userId", "guildId", name="uq_guild_membership_user_guild"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    userId: Mapped[str] = mapped_column(String)
    guildId: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, default=MEMBERSHIP_PENDING)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class GuildScore(Base):
    __tablename__ = "guild_scores"
    __table_args__ = (UniqueConstraint("userId", "guildId", name="uq_guild_score_user_guild"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    userId: Mapped[str] = mapped_column(String)
    guildId: Mapped[str] = mapped_column(String, index=True)
    score: Mapped[int] = mapped_column(Integer, default=0)
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_created", "userId", "createdAt"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    userId: Mapped[str] = mapped_column(String)
    type: Mapped[str] = mapped_column(String)
    guildId: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    fromUserId: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    content: Mapped[str] = mapped_column(Text)
    isRead: Mapped[bool] = mapped_column(Boolean, default=False)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class GuildMission(Base):
    """Owner-posted challenge; open until limitCount members have filed a record."""

    __tablename__ = "guild_missions"
    __table_args__ = (Index("ix_guild_missions_guild_created", "guildId", "createdAt"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    guildId: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    limitCount: Mapped[int] = mapped_column(Integer)
    difficulty: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    mainImage: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    extraImagesJson: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class GuildMissionRecord(Base):
    __tablename__ = "guild_mission_records"
    __table_args__ = (
        UniqueConstraint("missionId", "userId", name="uq_mission_record_mission_user"),
        Index("ix_mission_records_mission_created", "missionId", "createdAt"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    missionId: Mapped[str] = mapped_column(String)
    guildId: Mapped[str] = mapped_column(String, index=True)
    userId: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String)
    desc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    mainImage: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
