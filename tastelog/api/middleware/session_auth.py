"""
Cookie session and password primitives.

Passwords: bcrypt (cost from PASSWORD_BCRYPT_ROUNDS). Hashing and checking
run on Starlette's threadpool so a login never stalls the event loop.
bcrypt reads at most 72 bytes, so longer passwords are refused at
registration.

Sessions: 32 bytes of CSPRNG output, base64url-encoded, stored in
user_sessions with an expiry. The token is the cookie value; nothing else
about the user is kept client-side.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import bcrypt
from fastapi import Response
from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from tastelog.api.config import settings
from tastelog.api.db.models import User, UserSession

logger = logging.getLogger(__name__)

MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------

def hash_password(password: str, *, rounds: int | None = None) -> str:
    salt = bcrypt.gensalt(rounds or settings.password_bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")


def verify_password(password: str, stored: str | None) -> bool:
    """bcrypt check of `password` against a stored hash. Malformed hashes never match."""
    if not stored:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored.encode("ascii"))
    except (UnicodeEncodeError, ValueError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password(secrets.token_urlsafe(16))


async def hash_password_async(password: str) -> str:
    return await run_in_threadpool(hash_password, password)


async def verify_password_async(password: str, stored: str | None) -> bool:
    """
    verify_password on the threadpool. With no stored hash (unknown email)
    the password is checked against a throwaway hash, so both cases cost
    one bcrypt round trip.
    """
    if stored is None:
        await run_in_threadpool(verify_password, password, await run_in_threadpool(_dummy_hash))
        return False
    return await run_in_threadpool(verify_password, password, stored)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def new_session_token() -> str:
    """Return a URL-safe 32-byte CSPRNG token (no padding)."""
    return secrets.token_urlsafe(32)


async def open_session(session: AsyncSession, user_id: str) -> UserSession:
    """Insert a new session row for the user. Caller commits."""
    now = datetime.now(timezone.utc)
    row = UserSession(
        id=str(uuid.uuid4()),
        sessionToken=new_session_token(),
        userId=user_id,
        expires=now + timedelta(days=settings.session_ttl_days),
        createdAt=now,
    )
    session.add(row)
    return row


async def close_session(session: AsyncSession, token: str) -> None:
    await session.execute(delete(UserSession).where(UserSession.sessionToken == token))


async def load_session_user(session: AsyncSession, token: str) -> User | None:
    """Resolve a cookie token to its user; expired or unknown tokens give None."""
    now = datetime.now(timezone.utc)
    stmt = (
        select(User)
        .join(UserSession, UserSession.userId == User.id)
        .where(
            and_(
                UserSession.sessionToken == token,
                UserSession.expires > now,
            )
        )
    )
    result = await session.execute(stmt)
    return result.scalars().first()


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_days * 24 * 3600,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=settings.session_cookie_name, path="/")
