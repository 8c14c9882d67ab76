"""
AuthStore -- the current user snapshot, persisted locally and checked
against the server session on startup.

Constructed explicitly and passed to whoever needs it; there is no
module-level instance.

Startup (init):
  1. hydrate the user from storage (fast, possibly stale)
  2. GET /auth/me
       authenticated       -> user from the server
       unauthenticated/401 -> cleared
       any other failure   -> keep the hydrated snapshot
  3. initialized = True (is_logged_in is trustworthy from here on)

Storage holds {"user": {...} | null} under PERSIST_KEY.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from tastelog.client.http import ApiClient, ApiError

logger = logging.getLogger(__name__)

PERSIST_KEY = "auth-v2"

# Treated as "no session"
_UNAUTHENTICATED_STATUSES = (401, 403)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    name: Optional[str] = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> AuthUser:
        return cls(id=str(data["id"]), email=data["email"], name=data.get("name"))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------


class Storage(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Dict-backed storage for tests and throwaway sessions."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any:
        return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStorage:
    """
    A single JSON object on disk. Unreadable or malformed files are treated
    as empty. Writes go through a temp file + rename.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("auth_storage_unreadable path=%s error=%s", self.path, exc)
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("auth_storage_malformed path=%s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str) -> Any:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


Listener = Callable[[Optional[AuthUser]], None]


class AuthStore:
    """
    Usage:
        store = AuthStore(api, JsonFileStorage("~/.tastelog/auth.json"))
        await store.init()
        if not store.is_logged_in:
            await store.login("me@example.com", "secret")
    """

    def __init__(self, client: ApiClient, storage: Storage | None = None) -> None:
        self._client = client
        self._storage = storage if storage is not None else MemoryStorage()
        self._user: AuthUser | None = None
        self._initialized = False
        self._listeners: list[Listener] = []

    @property
    def user(self) -> AuthUser | None:
        return self._user

    @property
    def is_logged_in(self) -> bool:
        return self._user is not None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener(user) on every change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_user(self, user: AuthUser | None) -> None:
        if user == self._user:
            return
        self._user = user
        if user is None:
            self._storage.remove(PERSIST_KEY)
        else:
            self._storage.set(PERSIST_KEY, {"user": user.to_dict()})
        for listener in list(self._listeners):
            listener(user)

    def _hydrate(self) -> None:
        snapshot = self._storage.get(PERSIST_KEY)
        if not isinstance(snapshot, dict) or not isinstance(snapshot.get("user"), dict):
            return
        try:
            self._user = AuthUser.from_payload(snapshot["user"])
        except (KeyError, TypeError):
            logger.warning("auth_snapshot_invalid; ignoring")
            self._storage.remove(PERSIST_KEY)

    async def init(self) -> None:
        """Hydrate, then confirm against the server session. Runs once."""
        if self._initialized:
            return
        self._hydrate()
        try:
            body = await self._client.get("/auth/me")
        except ApiError as exc:
            if exc.status in _UNAUTHENTICATED_STATUSES:
                self.set_user(None)
            else:
                logger.warning(
                    "auth_session_check_failed status=%d error=%s; keeping stored user",
                    exc.status, exc.message,
                )
        else:
            user_data = body.get("user") if isinstance(body, dict) else None
            self.set_user(AuthUser.from_payload(user_data) if isinstance(user_data, dict) else None)
        finally:
            self._initialized = True

    async def login(self, email: str, password: str) -> AuthUser:
        body = await self._client.post_ok(
            "/auth/login", json={"email": normalize_email(email), "password": password}
        )
        user = AuthUser.from_payload(body["user"])
        self.set_user(user)
        logger.info("auth_login user_id=%s", user.id)
        return user

    async def register(self, email: str, password: str, name: str | None = None) -> AuthUser:
        payload: dict[str, Any] = {"email": normalize_email(email), "password": password}
        if name and name.strip():
            payload["name"] = name.strip()
        body = await self._client.post_ok("/auth/register", json=payload)
        user = AuthUser.from_payload(body["user"])
        self.set_user(user)
        logger.info("auth_register user_id=%s", user.id)
        return user

    async def logout(self) -> None:
        """End the server session; local state is cleared even if the call fails."""
        try:
            await self._client.post("/auth/logout", json={})
        except ApiError as exc:
            logger.warning("auth_logout_failed status=%d error=%s", exc.status, exc.message)
        finally:
            self.reset()

    def reset(self) -> None:
        self.set_user(None)
        self._storage.remove(PERSIST_KEY)
