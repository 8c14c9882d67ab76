"""
ApiClient -- credentialed JSON client for the Tastelog API, on httpx.

The session cookie set by /api/auth/login is kept in the client's cookie jar
and sent on every later call.

Base URL handling:
  http://localhost:3000/   -> http://localhost:3000/api
  http://localhost:3000/api -> unchanged
Relative paths may be given with or without a leading "/api"
("/auth/me", "auth/me" and "/api/auth/me" all resolve to <base>/auth/me).
Absolute http(s) URLs are used as-is.

Errors:
  non-2xx             -> ApiError(status=<code>, body=<parsed body>)
  timeout / network   -> ApiError(status=0)
A JSON response whose body does not parse yields body None.

No retries, no backoff, no caching.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 15.0

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


class ApiError(Exception):
    """A failed API call. status is 0 for timeouts and network failures."""

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        body: Any = None,
        url: str | None = None,
        code: str | int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body
        self.url = url
        self.code = code

    def __repr__(self) -> str:
        return f"ApiError(status={self.status}, code={self.code!r}, message={self.message!r})"


def normalize_base_url(raw: str) -> str:
    """Strip trailing slashes and make sure the URL ends with /api."""
    trimmed = raw.rstrip("/")
    return trimmed if trimmed.endswith("/api") else f"{trimmed}/api"


def _normalize_path(path: str) -> str:
    p = path.strip()
    if p in ("/api", "api"):
        return ""
    if p.startswith("/api/"):
        p = p[4:]
    elif p.startswith("api/"):
        p = p[3:]
    if not p:
        return ""
    return p if p.startswith("/") else f"/{p}"


def _is_json(content_type: str) -> bool:
    ct = content_type.lower()
    return "application/json" in ct or "+json" in ct


def _parse_body(resp: httpx.Response) -> Any:
    content_type = resp.headers.get("content-type", "")
    if _is_json(content_type):
        try:
            return resp.json()
        except ValueError:
            logger.warning("api_malformed_json url=%s status=%d", resp.request.url, resp.status_code)
            return None
    if content_type.lower().startswith("text/"):
        return resp.text
    return None


def _error_message(body: Any, status: int) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "msg"):
            value = body.get(key)
            if value:
                return str(value)
    return f"HTTP {status}"


def _error_code(body: Any) -> str | int | None:
    """The body's code, else the envelope's error code."""
    if not isinstance(body, dict):
        return None
    if body.get("code") is not None:
        return body["code"]
    error = body.get("error")
    return error if isinstance(error, str) else None


class ApiClient:
    """
    Usage:
        async with ApiClient("http://localhost:3000") as api:
            me = await api.get("/auth/me")
            await api.post_ok("/stays", json=report.to_payload())
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        cookies: httpx.Cookies | dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self._client = httpx.AsyncClient(
            timeout=timeout_s,
            cookies=cookies,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    def build_url(self, path: str) -> str:
        if _ABSOLUTE_URL.match(path):
            return path
        return f"{self.base_url}{_normalize_path(path)}"

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> tuple[httpx.Response, Any]:
        url = self.build_url(path)
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        timeout = httpx.Timeout(timeout_s) if timeout_s is not None else httpx.USE_CLIENT_DEFAULT

        try:
            resp = await self._client.request(
                method.upper(),
                url,
                params=params or None,
                json=json,
                headers=headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("api_timeout method=%s url=%s", method, url)
            raise ApiError("Request timed out.", status=0, url=url) from exc
        except httpx.HTTPError as exc:
            logger.warning("api_network_error method=%s url=%s error=%s", method, url, exc)
            raise ApiError(str(exc) or "Network error.", status=0, url=url) from exc

        body = _parse_body(resp)
        if not resp.is_success:
            raise ApiError(
                _error_message(body, resp.status_code),
                status=resp.status_code,
                body=body,
                url=url,
                code=_error_code(body),
            )
        return resp, body

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> Any:
        """Send a request and return the parsed body; raises ApiError on failure."""
        _, body = await self._send(
            method, path, params=params, json=json, headers=headers, timeout_s=timeout_s
        )
        return body

    async def request_ok(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        timeout_s: float | None = None,
    ) -> dict[str, Any]:
        """
        For endpoints whose contract is {"ok": bool, ...}.
        Anything but a JSON object with ok == true raises ApiError.
        """
        resp, body = await self._send(method, path, params=params, json=json, timeout_s=timeout_s)
        if not isinstance(body, dict) or body.get("ok") is not True:
            raise ApiError(
                _error_message(body, resp.status_code) if isinstance(body, dict) else "Unexpected response.",
                status=resp.status_code,
                body=body,
                url=str(resp.request.url),
                code=_error_code(body),
            )
        return body

    async def get(self, path: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, params=params, **kwargs)

    async def post_ok(self, path: str, json: Any = None, **kwargs: Any) -> dict[str, Any]:
        return await self.request_ok("POST", path, json=json, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
