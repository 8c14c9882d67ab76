"""Tastelog API client: HTTP wrapper, auth store, trackers and request functions."""

from tastelog.client.auth_store import AuthStore, AuthUser, JsonFileStorage, MemoryStorage
from tastelog.client.http import ApiClient, ApiError
from tastelog.client.tracker import (
    GeolocationError,
    GeolocationErrorCode,
    LiveLocationReporter,
    LocationSource,
    StayTracker,
    WatchOptions,
)

__all__ = [
    "ApiClient",
    "ApiError",
    "AuthStore",
    "AuthUser",
    "GeolocationError",
    "GeolocationErrorCode",
    "JsonFileStorage",
    "LiveLocationReporter",
    "LocationSource",
    "MemoryStorage",
    "StayTracker",
    "WatchOptions",
]
