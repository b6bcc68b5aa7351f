"""Tests for the in-memory and Redis-backed login throttles."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor

import fakeredis
import pytest

from backoffice.security.redis_throttle import RedisLoginThrottle
from backoffice.security.throttle import LoginThrottle


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


@pytest.fixture(params=["memory", "redis"])
def make_throttle(request, redis_client):
    def make(max_attempts: int, decay_seconds: int):
        if request.param == "memory":
            return LoginThrottle(max_attempts=max_attempts, decay_seconds=decay_seconds)
        return RedisLoginThrottle(
            redis_client, max_attempts=max_attempts, decay_seconds=decay_seconds, key_prefix="test"
        )

    return make


def test_throttle_allows_within_threshold(make_throttle):
    throttle = make_throttle(3, 60)
    key = "user@example.com|127.0.0.1"
    assert throttle.attempt(key)
    assert throttle.attempt(key)
    assert throttle.attempt(key)
    assert throttle.available_in(key) > 0


def test_throttle_blocks_excess(make_throttle):
    throttle = make_throttle(2, 60)
    key = "user@example.com|127.0.0.1"
    assert throttle.attempt(key)
    assert throttle.attempt(key)
    assert not throttle.attempt(key)
    assert not throttle.attempt(key)
    assert throttle.attempt("other@example.com|127.0.0.1")


def test_throttle_clear_resets_attempts(make_throttle):
    throttle = make_throttle(1, 60)
    key = "user@example.com|127.0.0.1"
    assert throttle.attempt(key)
    assert not throttle.attempt(key)
    throttle.clear(key)
    assert throttle.available_in(key) == 0
    assert throttle.attempt(key)


def test_throttle_expires_attempts(make_throttle):
    throttle = make_throttle(1, 1)
    key = "user@example.com|127.0.0.1"
    assert throttle.attempt(key)
    assert not throttle.attempt(key)
    time.sleep(1.1)
    assert throttle.attempt(key)


def test_concurrent_attempts_never_exceed_the_limit(make_throttle):
    throttle = make_throttle(5, 60)
    key = "user@example.com|127.0.0.1"
    with ThreadPoolExecutor(max_workers=8) as pool:
        granted = list(pool.map(lambda _: throttle.attempt(key), range(40)))
    assert granted.count(True) == 5


def test_memory_throttle_forgets_expired_keys():
    throttle = LoginThrottle(max_attempts=3, decay_seconds=1)
    for n in range(10):
        throttle.attempt(f"user{n}@example.com|127.0.0.1")
    assert throttle.available_in("never-seen|127.0.0.1") == 0
    assert len(throttle) == 10
    time.sleep(1.1)
    for n in range(10):
        assert throttle.available_in(f"user{n}@example.com|127.0.0.1") == 0
    assert len(throttle) == 0
