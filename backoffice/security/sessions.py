"""In-memory server-side session store."""

from __future__ import annotations

import hashlib
import secrets
import time
from threading import Lock
from typing import Any


def new_session_id() -> str:
    """Return an unguessable session identifier for the cookie."""
    return secrets.token_urlsafe(32)


def hash_session_id(session_id: str) -> str:
    """Return the SHA-256 hex digest under which a session is stored."""
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()


class MemorySessionStore:
    """Thread-safe session store keeping payloads in process memory.

    Sessions are keyed by the digest of their identifier, never the raw value.
    Expired entries are swept whenever a session is written.
    """

    def __init__(self, ttl_seconds: int) -> None:
        self._ttl = ttl_seconds
        self._sessions: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = Lock()

    def load(self, session_id: str) -> dict[str, Any] | None:
        """Return a copy of the session payload, or ``None`` when unknown or expired."""
        key = hash_session_id(session_id)
        now = time.time()
        with self._lock:
            entry = self._sessions.get(key)
            if entry is None:
                return None
            expires_at, data = entry
            if expires_at <= now:
                del self._sessions[key]
                return None
            return dict(data)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._sessions.items() if expires_at <= now]
        for key in expired:
            del self._sessions[key]

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        """Store ``data`` under ``session_id``, dropping any sessions that have expired."""
        key = hash_session_id(session_id)
        now = time.time()
        with self._lock:
            self._purge_expired(now)
            self._sessions[key] = (now + self._ttl, dict(data))

    def create(self, data: dict[str, Any]) -> str:
        session_id = new_session_id()
        self.save(session_id, data)
        return session_id

    def destroy(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(hash_session_id(session_id), None)

    def regenerate(self, session_id: str | None, data: dict[str, Any]) -> str:
        """Move ``data`` under a fresh identifier and drop the old one."""
        new_id = new_session_id()
        now = time.time()
        with self._lock:
            if session_id is not None:
                self._sessions.pop(hash_session_id(session_id), None)
            self._purge_expired(now)
            self._sessions[hash_session_id(new_id)] = (now + self._ttl, dict(data))
        return new_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
