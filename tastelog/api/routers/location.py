"""
Live location updates with server-side stay extension.

Endpoints:
  POST   /api/location/update  -- record position, extend or open a stay, maybe tag it
  POST   /api/location/clear   -- forget the caller's live position

Stay extension rules (per update):
  - newest stay within stay_extend_max_distance_m of the position AND
    last seen no more than stay_extend_max_gap_ms ago -> endTime = now ("update")
  - otherwise -> new stay anchored at the position ("create")

Once a stay has lasted stay_tag_min_duration_ms and has no mappedCategory,
the nearest Kakao place in a tracked group is looked up and its category is
written onto the stay. Lookup failure leaves the stay untagged.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.config import settings
from tastelog.api.db.models import LiveLocation, Stay, User
from tastelog.api.db.session import get_db
from tastelog.api.errors import bad_request
from tastelog.api.places.kakao import KakaoPlaceService
from tastelog.api.routers._auth_deps import require_user
from tastelog.api.routers.stays import coordinates_in_range, parse_coordinate
from tastelog.stays.geo import haversine_m

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/location", tags=["location"])


class LocationUpdatePayload(BaseModel):
    lat: Any = None
    lng: Any = None


def get_place_service(request: Request) -> KakaoPlaceService:
    """Place lookup from app state; a keyless (disabled) service when unset."""
    service = getattr(request.app.state, "place_service", None)
    if service is None:
        service = KakaoPlaceService(api_key="")
    return service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _upsert_live_location(session: AsyncSession, user_id: str, lat: float, lng: float, now: datetime) -> None:
    live = await session.get(LiveLocation, user_id)
    if live is None:
        session.add(LiveLocation(userId=user_id, lat=lat, lng=lng, updatedAt=now))
    else:
        live.lat = lat
        live.lng = lng
        live.updatedAt = now


async def _latest_stay(session: AsyncSession, user_id: str) -> Stay | None:
    stmt = (
        select(Stay)
        .where(Stay.userId == user_id)
        .order_by(Stay.startTime.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalars().first()


def _can_extend(stay: Stay, lat: float, lng: float, now: datetime) -> bool:
    distance = haversine_m(stay.lat, stay.lng, lat, lng)
    gap_ms = (now - stay.endTime).total_seconds() * 1000
    return distance <= settings.stay_extend_max_distance_m and gap_ms <= settings.stay_extend_max_gap_ms


def _duration_ms(stay: Stay) -> int:
    return int((stay.endTime - stay.startTime).total_seconds() * 1000)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/update")
async def update_location(
    body: LocationUpdatePayload,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
    places: KakaoPlaceService = Depends(get_place_service),
) -> dict:
    lat = parse_coordinate(body.lat)
    lng = parse_coordinate(body.lng)
    if lat is None or lng is None:
        raise bad_request("lat and lng must be numbers.")
    if not coordinates_in_range(lat, lng):
        raise bad_request("lat/lng out of range.")

    now = datetime.now(timezone.utc)
    await _upsert_live_location(session, user.id, lat, lng, now)

    stay = await _latest_stay(session, user.id)
    if stay is not None and _can_extend(stay, lat, lng, now):
        stay.endTime = now
        mode = "update"
    else:
        stay = Stay(
            id=str(uuid.uuid4()),
            userId=user.id,
            lat=lat,
            lng=lng,
            startTime=now,
            endTime=now,
            createdAt=now,
        )
        session.add(stay)
        mode = "create"
    await session.commit()

    duration_ms = _duration_ms(stay)
    logger.info(
        "location_update user_id=%s stay_id=%s mode=%s duration_ms=%d",
        user.id, stay.id, mode, duration_ms,
    )

    tagged = False
    if duration_ms >= settings.stay_tag_min_duration_ms and not stay.mappedCategory and places.enabled:
        place = await places.find_stayed_place(stay.lat, stay.lng)
        if place is not None and place.mapped_category:
            stay.kakaoPlaceId = place.place_id
            stay.categoryName = place.category_name
            stay.categoryGroupCode = place.category_group_code
            stay.mappedCategory = place.mapped_category
            await session.commit()
            tagged = True
            logger.info(
                "stay_tagged user_id=%s stay_id=%s category=%s place_id=%s",
                user.id, stay.id, place.mapped_category, place.place_id,
            )
        else:
            logger.info("stay_tag_skipped user_id=%s stay_id=%s", user.id, stay.id)

    return {
        "ok": True,
        "mode": mode,
        "stayId": stay.id,
        "tagged": tagged,
        "durationMs": duration_ms,
    }


@router.post("/clear")
async def clear_location(
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    await session.execute(delete(LiveLocation).where(LiveLocation.userId == user.id))
    await session.commit()
    return {"ok": True}
