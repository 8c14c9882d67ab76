"""
Per-client request limits over a one-minute sliding window in Redis.

Each hit is a member of a sorted set scored by its arrival time; members
older than the window are trimmed before counting.

  tier       applies to                                  limit setting
  login      /api/auth/login, /api/auth/register         rate_limit_login_per_min
  location   /api/location/update                        rate_limit_location_per_min
  auth       any other path, session cookie present      rate_limit_auth_per_min
  anon       any other path, no session cookie           rate_limit_anon_per_min

Clients are keyed by a hash of the session cookie, else by the first
X-Forwarded-For hop, else by the peer address. Without Redis every request
passes.
"""

import hashlib
import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from tastelog.api.config import settings
from tastelog.api.errors import error_body

logger = logging.getLogger(__name__)

WINDOW_S = 60
CREDENTIAL_PATHS = frozenset({"/api/auth/login", "/api/auth/register"})
LOCATION_UPDATE_PATH = "/api/location/update"
EXEMPT_PATHS = frozenset({"/health"})


def resolve_tier(path: str, has_session: bool) -> tuple[int, str]:
    """(requests per window, tier name) for a request."""
    if path in CREDENTIAL_PATHS:
        return settings.rate_limit_login_per_min, "login"
    if path == LOCATION_UPDATE_PATH:
        return settings.rate_limit_location_per_min, "location"
    if has_session:
        return settings.rate_limit_auth_per_min, "auth"
    return settings.rate_limit_anon_per_min, "anon"


def client_key(request: Request) -> tuple[str, bool]:
    """(bucket key, has_session). The raw session token never appears in Redis."""
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return f"session:{hashlib.sha256(token.encode('utf-8')).hexdigest()[:24]}", True

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}", False
    return f"ip:{request.client.host if request.client else 'unknown'}", False


class RateLimitMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, redis_client=None):
        super().__init__(app)
        self.redis = redis_client

    async def _record_hit(self, bucket: str, now: float, marker: str) -> int:
        """Trim, count, then add this hit. Returns the count before the hit."""
        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(bucket, 0, now - WINDOW_S)
        pipe.zcard(bucket)
        pipe.zadd(bucket, {marker: now})
        pipe.expire(bucket, WINDOW_S * 2)
        _, count, _, _ = await pipe.execute()
        return int(count)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if self.redis is None or path in EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        key, has_session = client_key(request)
        limit, tier = resolve_tier(path, has_session)
        now = time.time()
        seen = await self._record_hit(f"ratelimit:{tier}:{key}", now, f"{now}:{id(request)}")

        headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(max(0, limit - seen - 1)),
            "X-RateLimit-Reset": str(int(now + WINDOW_S)),
        }
        if seen >= limit:
            logger.info("rate_limited tier=%s path=%s", tier, path)
            return JSONResponse(
                status_code=429,
                content=error_body(
                    "RATE_LIMITED",
                    f"Too many requests. The {tier} limit is {limit} per minute.",
                ),
                headers={**headers, "Retry-After": str(WINDOW_S)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
