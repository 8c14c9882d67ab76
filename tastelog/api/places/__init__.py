"""Kakao Local place lookup and category mapping."""

from tastelog.api.places.kakao import (
    TRACKED_CATEGORIES,
    TRACKED_GROUPS,
    KakaoPlaceService,
    PlaceMatch,
    map_category,
)

__all__ = [
    "TRACKED_CATEGORIES",
    "TRACKED_GROUPS",
    "KakaoPlaceService",
    "PlaceMatch",
    "map_category",
]
