"""Shared auth dependencies for routers."""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.config import settings
from tastelog.api.db.models import User
from tastelog.api.db.session import get_db
from tastelog.api.errors import unauthorized
from tastelog.api.middleware.session_auth import load_session_user


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_db),
) -> User | None:
    """Resolve the session cookie to a user, or None when absent/expired."""
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    user = await load_session_user(session, token)
    if user is not None:
        request.state.user_id = user.id
    return user


async def require_user(user: User | None = Depends(get_current_user)) -> User:
    """401 unless a valid session is present."""
    if user is None:
        raise unauthorized()
    return user
