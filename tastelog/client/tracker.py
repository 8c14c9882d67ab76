"""
Location-driven trackers.

StayTracker
  Feeds each pushed position through StayDetector and POSTs a stay the moment
  a window crosses the dwell threshold. The POST runs as a fire-and-forget
  task: it never blocks the next sample and its outcome never touches the
  window. Failed reports are logged and dropped.

LiveLocationReporter
  Sends the latest position to /api/location/update at most once per
  interval, and /api/location/clear when stopped.

Both are driven by a push-based LocationSource (the platform's continuous
location watch). Callbacks run on the event loop one at a time, so the single
window slot needs no locking.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional, Protocol

from tastelog.client.http import ApiClient, ApiError
from tastelog.client.services import create_stay
from tastelog.stays import StayConfig, StayDetector, StayReport, StaySample, StayState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Location source contract
# ---------------------------------------------------------------------------


class GeolocationErrorCode(IntEnum):
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


_ERROR_MESSAGES = {
    GeolocationErrorCode.PERMISSION_DENIED: "Location access was denied. Allow location access to record stays.",
    GeolocationErrorCode.POSITION_UNAVAILABLE: "Your position is currently unavailable.",
    GeolocationErrorCode.TIMEOUT: "Getting your position timed out. Retrying with the next update.",
}


class GeolocationError(Exception):
    """Reported by a LocationSource instead of a position."""

    def __init__(self, code: GeolocationErrorCode, detail: str = "") -> None:
        super().__init__(detail or code.name)
        self.code = code
        self.detail = detail

    @property
    def user_message(self) -> str:
        return _ERROR_MESSAGES.get(self.code, "Could not get your location.")


@dataclass(frozen=True)
class WatchOptions:
    enable_high_accuracy: bool = True
    maximum_age_ms: int = 1_000
    timeout_ms: int = 5_000


# Live position sharing tolerates staler fixes
LIVE_WATCH_OPTIONS = WatchOptions(enable_high_accuracy=True, maximum_age_ms=10_000, timeout_ms=20_000)


class Subscription(Protocol):
    def cancel(self) -> None: ...


class LocationSource(Protocol):
    def subscribe(
        self,
        on_position: Callable[[StaySample], None],
        on_error: Callable[[GeolocationError], None],
        options: WatchOptions,
    ) -> Subscription: ...


# ---------------------------------------------------------------------------
# Stay tracker
# ---------------------------------------------------------------------------


class StayTracker:
    """
    Usage:
        tracker = StayTracker(source, api, config=settings.stay_config())
        tracker.start()        # inside a running event loop
        ...
        tracker.stop()
    """

    def __init__(
        self,
        source: LocationSource,
        client: ApiClient,
        *,
        config: StayConfig | None = None,
        options: WatchOptions | None = None,
        on_message: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._source = source
        self._client = client
        self._detector = StayDetector(config)
        self._options = options or WatchOptions()
        self._on_message = on_message
        self._subscription: Subscription | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[asyncio.Task] = set()
        self.last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._subscription is not None

    @property
    def state(self) -> StayState:
        return self._detector.state

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._subscription = self._source.subscribe(self._on_position, self._on_error, self._options)
        logger.info(
            "stay_tracking_started radius_m=%.1f dwell_threshold_ms=%d",
            self._detector.config.radius_m, self._detector.config.dwell_threshold_ms,
        )

    def stop(self) -> None:
        """Release the location watch and drop the window. In-flight reports keep running."""
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        subscription.cancel()
        self._detector.reset()
        logger.info("stay_tracking_stopped pending_reports=%d", len(self._pending))

    def _on_position(self, sample: StaySample) -> None:
        if self._subscription is None:
            return
        self.last_error = None
        report = self._detector.observe(sample)
        if report is not None:
            self._dispatch(report)

    def _on_error(self, error: GeolocationError) -> None:
        message = error.user_message
        self.last_error = message
        logger.warning("geolocation_error code=%s detail=%s", error.code.name, error.detail)
        if self._on_message is not None:
            self._on_message(message)

    def _dispatch(self, report: StayReport) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._send(report))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, report: StayReport) -> None:
        try:
            stay = await create_stay(self._client, report)
        except ApiError as exc:
            logger.warning(
                "stay_report_failed status=%d error=%s start_ms=%d end_ms=%d",
                exc.status, exc.message, report.start_time_ms, report.end_time_ms,
            )
        except Exception:
            logger.exception("stay_report_failed start_ms=%d end_ms=%d", report.start_time_ms, report.end_time_ms)
        else:
            logger.info(
                "stay_reported stay_id=%s duration_ms=%d",
                stay.get("id") if stay else None, report.end_time_ms - report.start_time_ms,
            )

    async def wait_for_reports(self) -> None:
        """Wait for in-flight report POSTs (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# ---------------------------------------------------------------------------
# Live location reporter
# ---------------------------------------------------------------------------


class LiveLocationReporter:
    """
    Throttled live position sharing. The throttle uses the samples'
    timestamps; the first sample after start is always sent.
    """

    def __init__(
        self,
        source: LocationSource,
        client: ApiClient,
        *,
        interval_ms: int = 15_000,
        options: WatchOptions | None = None,
    ) -> None:
        self._source = source
        self._client = client
        self._interval_ms = interval_ms
        self._options = options or LIVE_WATCH_OPTIONS
        self._subscription: Subscription | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._last_sent_ms: int | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._last_sent_ms = None
        self._subscription = self._source.subscribe(self._on_position, self._on_error, self._options)

    async def stop(self) -> None:
        """Release the watch and clear the server-side live position."""
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        subscription.cancel()
        try:
            await self._client.post_ok("/location/clear")
        except ApiError as exc:
            logger.warning("live_location_clear_failed status=%d error=%s", exc.status, exc.message)

    def _on_position(self, sample: StaySample) -> None:
        if self._subscription is None:
            return
        last = self._last_sent_ms
        if last is not None and sample.timestamp_ms - last < self._interval_ms:
            return
        self._last_sent_ms = sample.timestamp_ms

        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._send(sample))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_error(self, error: GeolocationError) -> None:
        logger.warning("live_location_geolocation_error code=%s detail=%s", error.code.name, error.detail)

    async def _send(self, sample: StaySample) -> None:
        try:
            body = await self._client.post_ok("/location/update", json={"lat": sample.lat, "lng": sample.lng})
        except ApiError as exc:
            logger.warning("live_location_update_failed status=%d error=%s", exc.status, exc.message)
        except Exception:
            logger.exception("live_location_update_failed")
        else:
            logger.debug(
                "live_location_updated mode=%s stay_id=%s tagged=%s",
                body.get("mode"), body.get("stayId"), body.get("tagged"),
            )

    async def wait_for_updates(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
