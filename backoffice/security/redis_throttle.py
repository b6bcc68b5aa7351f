"""Redis-backed login attempt throttle."""

from __future__ import annotations

import math
import time
from typing import Final

from redis import Redis
from redis.exceptions import ResponseError


class RedisLoginThrottle:
    """Distributed login attempt counter implemented with Redis sorted sets."""

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local counter_key = key .. ':seq'
    local window_ms = tonumber(ARGV[1])
    local max_attempts = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, 0, now_ms - window_ms)
    if redis.call('ZCARD', key) >= max_attempts then
        return 0
    end
    local seq = redis.call('INCR', counter_key)
    redis.call('PEXPIRE', counter_key, window_ms)
    redis.call('ZADD', key, now_ms, tostring(now_ms) .. ':' .. tostring(seq))
    redis.call('PEXPIRE', key, window_ms)
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_attempts: int,
        decay_seconds: int,
        key_prefix: str = "login"
    ) -> None:
        """Initialise the Redis client, window configuration, and Lua script cache."""
        self._client = client
        self._max_attempts = max_attempts
        self._window_ms = decay_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._LUA_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def attempt(self, key: str) -> bool:
        """Atomically count an attempt for ``key`` unless its window is used up."""
        redis_key = self._key(key)
        now_ms = int(time.time() * 1000)
        try:
            result = self._script(keys=[redis_key], args=[self._window_ms, self._max_attempts, now_ms])
            return int(result) == 1
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                return self._attempt_fallback(redis_key, now_ms)
            raise

    def _attempt_fallback(self, redis_key: str, now_ms: int) -> bool:
        """Non-atomic variant for servers without Lua scripting."""
        self._client.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        if self._client.zcard(redis_key) >= self._max_attempts:
            return False
        seq = self._client.incr(f"{redis_key}:seq")
        self._client.pexpire(f"{redis_key}:seq", self._window_ms)
        self._client.zadd(redis_key, {f"{now_ms}:{seq}": now_ms})
        self._client.pexpire(redis_key, self._window_ms)
        return True

    def clear(self, key: str) -> None:
        redis_key = self._key(key)
        self._client.delete(redis_key, f"{redis_key}:seq")

    def available_in(self, key: str) -> int:
        """Seconds until the oldest counted attempt leaves the window."""
        redis_key = self._key(key)
        now_ms = int(time.time() * 1000)
        self._client.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        oldest = self._client.zrange(redis_key, 0, 0, withscores=True)
        if not oldest:
            return 0
        _, score = oldest[0]
        return max(0, math.ceil((score + self._window_ms - now_ms) / 1000))
