"""Redis-backed server-side session store."""

from __future__ import annotations

import json
from typing import Any

from redis import Redis

from .sessions import hash_session_id, new_session_id


class RedisSessionStore:
    """Session store shared across workers through Redis string keys."""

    def __init__(self, client: Redis, *, ttl_seconds: int, key_prefix: str = "session") -> None:
        """Keep the Redis client and expiry applied to every write."""
        self._client = client
        self._ttl = ttl_seconds
        self._key_prefix = key_prefix

    def _key(self, session_id: str) -> str:
        return f"{self._key_prefix}:{hash_session_id(session_id)}"

    def load(self, session_id: str) -> dict[str, Any] | None:
        raw = self._client.get(self._key(session_id))
        if raw is None:
            return None
        return json.loads(raw)

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        self._client.set(self._key(session_id), json.dumps(data), ex=self._ttl)

    def create(self, data: dict[str, Any]) -> str:
        session_id = new_session_id()
        self.save(session_id, data)
        return session_id

    def destroy(self, session_id: str) -> None:
        self._client.delete(self._key(session_id))

    def regenerate(self, session_id: str | None, data: dict[str, Any]) -> str:
        """Store ``data`` under a new identifier and delete the old key atomically."""
        new_id = new_session_id()
        pipe = self._client.pipeline(transaction=True)
        if session_id is not None:
            pipe.delete(self._key(session_id))
        pipe.set(self._key(new_id), json.dumps(data), ex=self._ttl)
        pipe.execute()
        return new_id
