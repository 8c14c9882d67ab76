"""
Tastelog FastAPI service -- auth, stays, live location, taste records,
taste dashboard, guilds, notifications.

Entrypoint: uvicorn tastelog.api.main:app --host 0.0.0.0 --port 3000
"""

import logging
import uuid
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from tastelog.api.config import settings
from tastelog.api.db.engine import create_all, create_engine as create_sa_engine
from tastelog.api.errors import error_body
from tastelog.api.middleware.cors import setup_cors
from tastelog.api.middleware.rate_limit import RateLimitMiddleware
from tastelog.api.middleware.sentry import setup_sentry
from tastelog.api.places.kakao import KakaoPlaceService
from tastelog.api.routers import (
    auth,
    guild_missions,
    guilds,
    health,
    location,
    notifications,
    stays,
    taste_dashboard,
    taste_records,
)

logger = logging.getLogger(__name__)

# Filled in by lifespan; the rate limiter reads it per request.
_redis_holder: dict = {"client": None}


async def _connect_redis() -> aioredis.Redis | None:
    """Connected client, or None when REDIS_URL is empty or unreachable."""
    if not settings.redis_url:
        return None
    client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    try:
        await client.ping()
    except Exception as e:
        logger.warning("redis_unavailable rate_limiting=disabled error=%s", e)
        await client.aclose()
        return None
    return client


async def _init_database(app: FastAPI) -> AsyncEngine | None:
    if not settings.database_url:
        return None
    try:
        engine = create_sa_engine()
        if settings.db_create_all:
            await create_all(engine)
    except Exception as e:
        logger.warning("db_init_failed error=%s", e)
        return None
    app.state.db_engine = engine
    app.state.db_session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_sentry()

    redis_client = await _connect_redis()
    _redis_holder["client"] = redis_client
    app.state.redis = redis_client
    app.state.settings = settings

    sa_engine = await _init_database(app)

    app.state.place_service = KakaoPlaceService(
        api_key=settings.kakao_rest_api_key,
        timeout_s=settings.kakao_api_timeout_s,
        match_radius_m=settings.place_match_radius_m,
    )
    if not app.state.place_service.enabled:
        logger.warning("KAKAO_REST_API_KEY not set; stay category tagging disabled")

    yield

    if sa_engine is not None:
        await sa_engine.dispose()
    if redis_client is not None:
        await redis_client.aclose()
    _redis_holder["client"] = None


app = FastAPI(
    title="Tastelog API",
    version=settings.app_version,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)

# -- Routers and middleware (last added runs outermost) --

# Routers first (innermost). Notifications before guilds: /api/guilds/{id}
# would otherwise capture /api/guilds/notifications.
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(stays.router)
app.include_router(location.router)
app.include_router(taste_records.router)
app.include_router(taste_dashboard.router)
app.include_router(notifications.router)
app.include_router(guild_missions.router)
app.include_router(guilds.router)


# Request ID injection
@app.middleware("http")
async def request_envelope_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# Rate limiting, bound to Redis after startup
class _LazyRateLimitMiddleware(RateLimitMiddleware):
    """Reads the Redis client from _redis_holder on each request."""

    def __init__(self, app):
        super().__init__(app, redis_client=None)

    async def dispatch(self, request, call_next):
        self.redis = _redis_holder.get("client")
        return await super().dispatch(request, call_next)


app.add_middleware(_LazyRateLimitMiddleware)

# CORS outermost so preflight never reaches the limiter
setup_cors(app)


# -- Exception Handlers --

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = {"ok": False, **exc.detail}
    elif exc.status_code == 404:
        content = error_body("NOT_FOUND", "Resource not found.")
    else:
        content = error_body(f"HTTP_{exc.status_code}", str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers={**(exc.headers or {}), "X-Request-ID": _request_id(request)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{location}: {first.get('msg', 'invalid')}" if location else "Validation error."
    return JSONResponse(
        status_code=422,
        content=error_body("VALIDATION_ERROR", message),
        headers={"X-Request-ID": _request_id(request)},
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc) -> JSONResponse:
    logger.error("unhandled_error path=%s request_id=%s", request.url.path, _request_id(request), exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_body("SERVER_ERROR", "An unexpected error occurred."),
        headers={"X-Request-ID": _request_id(request)},
    )
