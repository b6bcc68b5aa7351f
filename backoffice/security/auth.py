"""Session-backed authentication for browser requests."""

from __future__ import annotations

from typing import Any, Protocol

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ..config import get_settings

IDENTITY_KEY = "account_id"
FLASH_KEY = "_flash"


class SessionStore(Protocol):
    def load(self, session_id: str) -> dict[str, Any] | None: ...

    def save(self, session_id: str, data: dict[str, Any]) -> None: ...

    def create(self, data: dict[str, Any]) -> str: ...

    def destroy(self, session_id: str) -> None: ...

    def regenerate(self, session_id: str | None, data: dict[str, Any]) -> str: ...


class SessionAuthenticator:
    """Identity and session operations for a single request.

    Changes are written back to the store by :meth:`commit`, except for
    invalidation and id regeneration which hit the store immediately.
    """

    def __init__(self, store: SessionStore, session_id: str | None) -> None:
        self._store = store
        self._incoming_id = session_id
        self._session_id: str | None = None
        self._data: dict[str, Any] = {}
        self._dirty = False
        if session_id:
            data = store.load(session_id)
            if data is not None:
                self._session_id = session_id
                self._data = data

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def current_identity(self) -> str | None:
        """Return the authenticated account id, if any."""
        return self._data.get(IDENTITY_KEY)

    def login(self, account_id: str) -> None:
        """Attach ``account_id`` to a freshly issued session identifier."""
        self._data[IDENTITY_KEY] = account_id
        self.regenerate_session_id()

    def logout(self) -> None:
        if self._data.pop(IDENTITY_KEY, None) is not None:
            self._dirty = True

    def invalidate_session(self) -> None:
        """Destroy the stored session and start over with an empty payload."""
        if self._session_id is not None:
            self._store.destroy(self._session_id)
        self._session_id = None
        self._data = {}
        self._dirty = True

    def regenerate_session_id(self) -> None:
        self._session_id = self._store.regenerate(self._session_id, self._data)
        self._dirty = False

    def flash(self, key: str, value: Any) -> None:
        """Stash a one-shot message for the next request."""
        self._data.setdefault(FLASH_KEY, {})[key] = value
        self._dirty = True

    def pull_flash(self) -> dict[str, Any]:
        """Return and clear all flashed messages."""
        flashed = self._data.pop(FLASH_KEY, None)
        if flashed is None:
            return {}
        self._dirty = True
        return flashed

    def commit(self) -> None:
        """Persist pending changes to the store."""
        if not self._dirty:
            return
        if self._session_id is not None:
            self._store.save(self._session_id, self._data)
        elif self._data:
            self._session_id = self._store.create(self._data)
        self._dirty = False

    def apply_cookie(self, response: Response, *, cookie_name: str, max_age: int, secure: bool) -> None:
        """Set or clear the session cookie to match the committed state."""
        if self._session_id is not None:
            if self._session_id != self._incoming_id:
                response.set_cookie(
                    cookie_name,
                    self._session_id,
                    max_age=max_age,
                    httponly=True,
                    secure=secure,
                    samesite="lax",
                )
        elif self._incoming_id:
            response.delete_cookie(cookie_name)


class SessionMiddleware(BaseHTTPMiddleware):
    """Attach a :class:`SessionAuthenticator` to ``request.state.auth``.

    The session store is read from ``app.state.session_store``.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        settings = get_settings()
        store: SessionStore = request.app.state.session_store
        auth = await run_in_threadpool(
            SessionAuthenticator, store, request.cookies.get(settings.session_cookie)
        )
        request.state.auth = auth
        response = await call_next(request)
        await run_in_threadpool(auth.commit)
        auth.apply_cookie(
            response,
            cookie_name=settings.session_cookie,
            max_age=settings.session_ttl_seconds,
            secure=settings.cookie_secure,
        )
        return response


def get_authenticator(request: Request) -> SessionAuthenticator:
    """Resolve the per-request authenticator installed by :class:`SessionMiddleware`."""
    auth: SessionAuthenticator = request.state.auth
    return auth
