"""
Cookie-session authentication.

Endpoints:
  GET    /api/auth/me        -- current session user (public; {authenticated: false} when none)
  POST   /api/auth/register  -- create account, open session (201)
  POST   /api/auth/login     -- verify credentials, open session
  POST   /api/auth/logout    -- drop session row and cookie (idempotent)

Emails are trimmed and lowercased before lookup and storage. Login failures
return one message for unknown email and wrong password.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.config import settings
from tastelog.api.db.models import User
from tastelog.api.db.session import get_db
from tastelog.api.errors import api_error, bad_request
from tastelog.api.middleware.session_auth import (
    MAX_PASSWORD_BYTES,
    clear_session_cookie,
    close_session,
    hash_password_async,
    open_session,
    set_session_cookie,
    verify_password_async,
)
from tastelog.api.routers._auth_deps import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterPayload(BaseModel):
    email: str = ""
    password: str = ""
    name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginPayload(BaseModel):
    email: str = ""
    password: str = ""

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def serialize_user(user: User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name}


async def _find_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalars().first()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/me")
async def me(user: User | None = Depends(get_current_user)) -> dict:
    if user is None:
        return {"ok": True, "authenticated": False, "user": None}
    return {"ok": True, "authenticated": True, "user": serialize_user(user)}


@router.post("/register", status_code=201)
async def register(
    body: RegisterPayload,
    response: Response,
    session: AsyncSession = Depends(get_db),
) -> dict:
    if not body.email or not body.password:
        raise bad_request("email and password are required.")
    if "@" not in body.email:
        raise bad_request("email is not valid.")
    if len(body.password) < settings.password_min_length:
        raise bad_request(f"password must be at least {settings.password_min_length} characters.")
    if len(body.password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise bad_request(f"password must be at most {MAX_PASSWORD_BYTES} bytes.")

    if await _find_by_email(session, body.email) is not None:
        raise api_error(409, "EMAIL_ALREADY_EXISTS", "Email already registered.")

    now = datetime.now(timezone.utc)
    name = body.name.strip() if body.name and body.name.strip() else None
    user = User(
        id=str(uuid.uuid4()),
        email=body.email,
        name=name,
        passwordHash=await hash_password_async(body.password),
        createdAt=now,
        updatedAt=now,
    )
    session.add(user)
    try:
        await session.flush()
    except IntegrityError:
        # Concurrent registration with the same email
        await session.rollback()
        raise api_error(409, "EMAIL_ALREADY_EXISTS", "Email already registered.")

    auth_session = await open_session(session, user.id)
    await session.commit()

    set_session_cookie(response, auth_session.sessionToken)
    logger.info("user_registered user_id=%s", user.id)
    return {"ok": True, "user": serialize_user(user)}


@router.post("/login")
async def login(
    body: LoginPayload,
    response: Response,
    session: AsyncSession = Depends(get_db),
) -> dict:
    if not body.email or not body.password:
        raise bad_request("email and password are required.")

    user = await _find_by_email(session, body.email)
    # Unknown emails still pay for one bcrypt check
    verified = await verify_password_async(body.password, user.passwordHash if user is not None else None)
    if user is None or not verified:
        logger.info("login_failed email_known=%s", user is not None)
        raise api_error(401, "INVALID_CREDENTIALS", "Invalid credentials.")

    auth_session = await open_session(session, user.id)
    await session.commit()

    set_session_cookie(response, auth_session.sessionToken)
    logger.info("user_logged_in user_id=%s", user.id)
    return {"ok": True, "user": serialize_user(user)}


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db),
) -> dict:
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        await close_session(session, token)
        await session.commit()
    clear_session_cookie(response)
    return {"ok": True}
