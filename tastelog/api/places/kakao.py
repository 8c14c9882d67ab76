"""
KakaoPlaceService -- Kakao Local category search used to tag long stays.

A stay that lasted long enough is matched to the nearest place in one of the
tracked category groups, and the place's category is mapped onto the taste
dashboard categories:

  CT1 (culture)      -> 영화 / 공연 / 전시 by name keywords, else 문화시설
  AT4 (attraction)   -> 관광명소
  CE7 (cafe)         -> 카페
  FD6 (restaurant)   -> 식당

Kakao Local /search/category.json returns:
  {
    "documents": [
      {"id": "123", "place_name": "...", "category_name": "문화,예술 > 영화,영상 > 영화관",
       "category_group_code": "CT1", "x": "126.97", "y": "37.56", ...}
    ]
  }

x is longitude, y is latitude. Errors are logged and yield no match.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from tastelog.stays.geo import haversine_m

logger = logging.getLogger(__name__)

_KAKAO_CATEGORY_ENDPOINT = "https://dapi.kakao.com/v2/local/search/category.json"

# Category groups searched when tagging a stay
TRACKED_GROUPS = ("CT1", "AT4", "CE7", "FD6")

# Dashboard categories, in display order
TRACKED_CATEGORIES = ("영화", "공연", "전시", "문화시설", "관광명소", "카페", "식당")

_PERFORMANCE_KEYWORDS = ("공연", "아트홀", "뮤지컬", "라이브")
_EXHIBITION_KEYWORDS = ("전시", "미술", "갤러리")

# Kakao caps page size at 15
_PAGE_SIZE = 15


@dataclass
class PlaceMatch:
    """A Kakao place mapped onto a tracked category."""

    place_id: str
    name: str
    category_name: str
    category_group_code: str
    mapped_category: str | None
    lat: float
    lng: float
    distance_m: float = 0.0


def map_category(group_code: str, category_name: str | None) -> str | None:
    """Map a Kakao category group + name onto a dashboard category."""
    name = category_name or ""
    if group_code == "CT1":
        if "영화" in name:
            return "영화"
        if any(k in name for k in _PERFORMANCE_KEYWORDS):
            return "공연"
        if any(k in name for k in _EXHIBITION_KEYWORDS):
            return "전시"
        return "문화시설"
    if group_code == "AT4":
        return "관광명소"
    if group_code == "CE7":
        return "카페"
    if group_code == "FD6":
        return "식당"
    return None


def _parse_document(doc: dict[str, Any]) -> PlaceMatch | None:
    try:
        lng = float(doc["x"])
        lat = float(doc["y"])
    except (KeyError, TypeError, ValueError):
        return None
    group = doc.get("category_group_code", "")
    category_name = doc.get("category_name", "")
    return PlaceMatch(
        place_id=str(doc.get("id", "")),
        name=doc.get("place_name", ""),
        category_name=category_name,
        category_group_code=group,
        mapped_category=map_category(group, category_name),
        lat=lat,
        lng=lng,
    )


class KakaoPlaceService:
    """
    Kakao Local client.

    Usage:
        service = KakaoPlaceService(api_key="...")
        place = await service.find_stayed_place(37.5665, 126.9780)
    """

    def __init__(
        self,
        api_key: str,
        *,
        timeout_s: float = 5.0,
        match_radius_m: int = 1000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._timeout_s = timeout_s
        self._match_radius_m = match_radius_m
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def _search_group(
        self, client: httpx.AsyncClient, group: str, lat: float, lng: float
    ) -> list[PlaceMatch]:
        resp = await client.get(
            _KAKAO_CATEGORY_ENDPOINT,
            headers={"Authorization": f"KakaoAK {self._api_key}"},
            params={
                "category_group_code": group,
                "x": str(lng),
                "y": str(lat),
                "radius": self._match_radius_m,
                "sort": "distance",
                "size": _PAGE_SIZE,
            },
        )
        resp.raise_for_status()
        documents = resp.json().get("documents", [])
        return [p for p in (_parse_document(d) for d in documents) if p is not None]

    async def find_stayed_place(self, lat: float, lng: float) -> PlaceMatch | None:
        """
        Nearest tracked place within the match radius, or None.

        Returns None when the API key is unset or Kakao is unreachable.
        """
        if not self.enabled:
            return None

        candidates: list[PlaceMatch] = []
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                for group in TRACKED_GROUPS:
                    candidates.extend(await self._search_group(client, group, lat, lng))
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Kakao Local returned %d for lat=%.5f lng=%.5f: %s",
                exc.response.status_code, lat, lng, exc.response.text[:200],
            )
            return None
        except Exception:
            logger.exception("Kakao Local lookup failed for lat=%.5f lng=%.5f", lat, lng)
            return None

        best: PlaceMatch | None = None
        for place in candidates:
            place.distance_m = haversine_m(lat, lng, place.lat, place.lng)
            if place.distance_m > self._match_radius_m:
                continue
            if best is None or place.distance_m < best.distance_m:
                best = place
        return best
