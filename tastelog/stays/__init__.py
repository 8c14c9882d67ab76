"""Stay detection: haversine geometry and the dwell-window state machine."""

from tastelog.stays.detector import (
    DEFAULT_DWELL_THRESHOLD_MS,
    DEFAULT_RADIUS_M,
    NO_WINDOW,
    NoWindow,
    OpenWindow,
    StayConfig,
    StayDetector,
    StayReport,
    StaySample,
    StayState,
    observe_sample,
)
from tastelog.stays.geo import EARTH_RADIUS_M, haversine_m, within_radius

__all__ = [
    "DEFAULT_DWELL_THRESHOLD_MS",
    "DEFAULT_RADIUS_M",
    "EARTH_RADIUS_M",
    "NO_WINDOW",
    "NoWindow",
    "OpenWindow",
    "StayConfig",
    "StayDetector",
    "StayReport",
    "StaySample",
    "StayState",
    "haversine_m",
    "observe_sample",
    "within_radius",
]
