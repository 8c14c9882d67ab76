"""
Stay detection -- turns a noisy stream of geolocation samples into discrete
"the user stayed near point P for at least D" events.

A tracking session holds a single window slot, modelled as a tagged variant:

  NoWindow                 -- nothing tracked yet (or tracking just started)
  OpenWindow(anchor, start, last, reported)

Rules applied per sample (observe_sample):
  - NoWindow                       -> open a window anchored at the sample
  - distance(anchor, sample) <= R  -> extend: last = sample time; report once
                                      when last - start >= dwell threshold
  - distance(anchor, sample) >  R  -> abandon and re-anchor at the sample;
                                      the abandoned window is never reported

The report is emitted exactly once per window. `reported` flips at the moment
the threshold is crossed, independent of whether the POST later succeeds.
There is no maximum window duration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Union

from tastelog.stays.geo import haversine_m

logger = logging.getLogger(__name__)

# Maximum distance from the anchor for a sample to count as the same place
DEFAULT_RADIUS_M = 50.0

# Minimum in-radius dwell before a window qualifies as a stay.
# Production deployments typically raise this to 10 minutes (600_000).
DEFAULT_DWELL_THRESHOLD_MS = 30_000


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StaySample:
    """A single geolocation reading."""

    lat: float
    lng: float
    timestamp_ms: int


@dataclass(frozen=True, slots=True)
class StayConfig:
    radius_m: float = DEFAULT_RADIUS_M
    dwell_threshold_ms: int = DEFAULT_DWELL_THRESHOLD_MS

    def __post_init__(self) -> None:
        if self.radius_m < 0:
            raise ValueError(f"radius_m must be >= 0, got {self.radius_m}")
        if self.dwell_threshold_ms < 0:
            raise ValueError(f"dwell_threshold_ms must be >= 0, got {self.dwell_threshold_ms}")


@dataclass(frozen=True, slots=True)
class NoWindow:
    """No dwell candidate is being tracked."""


@dataclass(frozen=True, slots=True)
class OpenWindow:
    """The current dwell candidate."""

    anchor_lat: float
    anchor_lng: float
    start_time_ms: int
    last_time_ms: int
    reported: bool = False

    @property
    def duration_ms(self) -> int:
        return self.last_time_ms - self.start_time_ms


StayState = Union[NoWindow, OpenWindow]

NO_WINDOW = NoWindow()


@dataclass(frozen=True, slots=True)
class StayReport:
    """A qualifying window, ready to be sent to POST /api/stays."""

    lat: float
    lng: float
    start_time_ms: int
    end_time_ms: int

    def to_payload(self) -> dict:
        """Wire shape: epoch milliseconds, anchor coordinates."""
        return {
            "lat": self.lat,
            "lng": self.lng,
            "startTime": self.start_time_ms,
            "endTime": self.end_time_ms,
        }


# ---------------------------------------------------------------------------
# Transition function
# ---------------------------------------------------------------------------


def _open_at(sample: StaySample) -> OpenWindow:
    return OpenWindow(
        anchor_lat=sample.lat,
        anchor_lng=sample.lng,
        start_time_ms=sample.timestamp_ms,
        last_time_ms=sample.timestamp_ms,
        reported=False,
    )


def observe_sample(
    sample: StaySample,
    state: StayState,
    config: StayConfig | None = None,
) -> tuple[OpenWindow, StayReport | None]:
    """
    Apply one sample to the window slot.

    Returns (new_state, report). `report` is non-None only on the sample that
    first brings an unreported window to the dwell threshold.
    """
    cfg = config or StayConfig()

    if isinstance(state, NoWindow):
        return _open_at(sample), None

    distance = haversine_m(state.anchor_lat, state.anchor_lng, sample.lat, sample.lng)

    if distance > cfg.radius_m:
        logger.debug(
            "stay_window_abandoned distance_m=%.1f duration_ms=%d reported=%s",
            distance, state.duration_ms, state.reported,
        )
        return _open_at(sample), None

    # Out-of-order timestamps never move `last` behind `start`
    last = max(sample.timestamp_ms, state.start_time_ms)
    window = replace(state, last_time_ms=last)

    if not window.reported and window.duration_ms >= cfg.dwell_threshold_ms:
        window = replace(window, reported=True)
        report = StayReport(
            lat=window.anchor_lat,
            lng=window.anchor_lng,
            start_time_ms=window.start_time_ms,
            end_time_ms=window.last_time_ms,
        )
        return window, report

    return window, None


class StayDetector:
    """Holds the single window slot for one tracking session."""

    def __init__(self, config: StayConfig | None = None) -> None:
        self.config = config or StayConfig()
        self._state: StayState = NO_WINDOW

    @property
    def state(self) -> StayState:
        return self._state

    def observe(self, sample: StaySample) -> StayReport | None:
        self._state, report = observe_sample(sample, self._state, self.config)
        return report

    def reset(self) -> None:
        """Drop the current window (tracking stopped)."""
        self._state = NO_WINDOW
