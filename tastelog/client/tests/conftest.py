"""
Shared fixtures for the client test suite.

Provides:
- FakeApi: a route table served through httpx.MockTransport (no network)
- FakeLocationSource: a push-based location source driven by the test
"""

from typing import Any, Callable

import httpx
import pytest

from tastelog.client.http import ApiClient
from tastelog.stays import StaySample


class FakeApi:
    """
    Usage:
        fake_api.on("GET", "/api/auth/me", json={"ok": True, "user": None})
        fake_api.on("POST", "/api/stays", status=500, json={"ok": False, "error": "SERVER_ERROR"})
        fake_api.on("GET", "/api/x", handler=lambda request: httpx.Response(204))

    Unrouted requests get a 404 envelope. Every request is kept in .requests.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(
        self,
        method: str,
        path: str,
        *,
        status: int = 200,
        json: Any = None,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> "FakeApi":
        if handler is None:
            def handler(request: httpx.Request, _status=status, _json=json) -> httpx.Response:
                return httpx.Response(_status, json=_json)
        self.routes[(method.upper(), path)] = handler
        return self

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"ok": False, "error": "NOT_FOUND", "message": "Resource not found."})
        return handler(request)


class _FakeSubscription:
    def __init__(self, source: "FakeLocationSource") -> None:
        self._source = source

    def cancel(self) -> None:
        self._source.cancelled += 1


class FakeLocationSource:
    """Keeps the callbacks so tests can push positions and errors."""

    def __init__(self) -> None:
        self.on_position = None
        self.on_error = None
        self.options = None
        self.subscribe_count = 0
        self.cancelled = 0

    def subscribe(self, on_position, on_error, options):
        self.on_position = on_position
        self.on_error = on_error
        self.options = options
        self.subscribe_count += 1
        return _FakeSubscription(self)

    def push(self, lat: float, lng: float, timestamp_ms: int) -> None:
        self.on_position(StaySample(lat=lat, lng=lng, timestamp_ms=timestamp_ms))

    def fail(self, error) -> None:
        self.on_error(error)


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
async def api_client(fake_api):
    client = ApiClient("http://testserver", transport=httpx.MockTransport(fake_api))
    yield client
    await client.aclose()


@pytest.fixture
def location_source():
    return FakeLocationSource()
