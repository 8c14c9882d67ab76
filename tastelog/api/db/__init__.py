"""
SQLAlchemy async database module.

Re-exports engine, session, and model utilities for the FastAPI service.
"""

from tastelog.api.db.engine import create_all, create_engine, standalone_session
from tastelog.api.db.session import get_db
from tastelog.api.db.models import (
    Base,
    Guild,
    GuildMembership,
    GuildMission,
    GuildMissionRecord,
    GuildScore,
    LiveLocation,
    Notification,
    Stay,
    TasteRecord,
    User,
    UserSession,
)

__all__ = [
    "create_all",
    "create_engine",
    "standalone_session",
    "get_db",
    "Base",
    "Guild",
    "GuildMembership",
    "GuildMission",
    "GuildMissionRecord",
    "GuildScore",
    "LiveLocation",
    "Notification",
    "Stay",
    "TasteRecord",
    "User",
    "UserSession",
]
