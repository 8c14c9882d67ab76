"""
Stay records reported by the client-side stay detector.

Endpoints:
  POST   /api/stays   -- persist one qualifying dwell window (201)
  GET    /api/stays   -- the caller's recent stays, newest first

Wire format: lat/lng as numbers, startTime/endTime as epoch milliseconds.
Missing times default to now. Numeric strings are accepted for lat/lng.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.db.models import Stay, User
from tastelog.api.db.session import get_db
from tastelog.api.errors import bad_request
from tastelog.api.routers._auth_deps import require_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stays", tags=["stays"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class StayCreatePayload(BaseModel):
    lat: Any = None
    lng: Any = None
    startTime: Optional[Any] = None
    endTime: Optional[Any] = None


def parse_coordinate(value: Any) -> float | None:
    """Number or numeric string -> finite float; anything else -> None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def coordinates_in_range(lat: float, lng: float) -> bool:
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def ms_to_datetime(value: Any, default: datetime) -> datetime | None:
    if value is None:
        return default
    if isinstance(value, bool):
        return None
    try:
        ms = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(ms):
        return None
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        # Finite but outside the platform time range
        return None


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def serialize_stay(stay: Stay) -> dict:
    return {
        "id": stay.id,
        "userId": stay.userId,
        "lat": stay.lat,
        "lng": stay.lng,
        "startTime": _iso(stay.startTime),
        "endTime": _iso(stay.endTime),
        "mappedCategory": stay.mappedCategory,
        "categoryName": stay.categoryName,
        "createdAt": _iso(stay.createdAt),
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", status_code=201)
async def create_stay(
    body: StayCreatePayload,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    lat = parse_coordinate(body.lat)
    lng = parse_coordinate(body.lng)
    if lat is None or lng is None:
        raise bad_request("lat and lng must be numbers.")
    if not coordinates_in_range(lat, lng):
        raise bad_request("lat/lng out of range.")

    now = datetime.now(timezone.utc)
    start = ms_to_datetime(body.startTime, now)
    end = ms_to_datetime(body.endTime, now)
    if start is None or end is None:
        raise bad_request("startTime and endTime must be epoch milliseconds.")
    if end < start:
        raise bad_request("endTime must not precede startTime.")

    stay = Stay(
        id=str(uuid.uuid4()),
        userId=user.id,
        lat=lat,
        lng=lng,
        startTime=start,
        endTime=end,
        createdAt=now,
    )
    session.add(stay)
    await session.commit()

    logger.info(
        "stay_created user_id=%s stay_id=%s duration_ms=%d",
        user.id, stay.id, int((end - start).total_seconds() * 1000),
    )
    return {"ok": True, "stay": serialize_stay(stay)}


@router.get("")
async def list_stays(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    stmt = (
        select(Stay)
        .where(Stay.userId == user.id)
        .order_by(Stay.startTime.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return {"ok": True, "stays": [serialize_stay(s) for s in result.scalars().all()]}
