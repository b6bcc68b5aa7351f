"""Tests for the session stores and the per-request authenticator."""

from __future__ import annotations

import time

import fakeredis
import pytest
from fastapi import Response

from backoffice.security.auth import SessionAuthenticator
from backoffice.security.redis_sessions import RedisSessionStore
from backoffice.security.sessions import MemorySessionStore, hash_session_id


@pytest.fixture(params=["memory", "redis"])
def store(request):
    if request.param == "memory":
        return MemorySessionStore(ttl_seconds=60)
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return RedisSessionStore(client, ttl_seconds=60, key_prefix="test-session")


def test_store_round_trip_and_destroy(store):
    session_id = store.create({"account_id": "a-1"})
    assert store.load(session_id) == {"account_id": "a-1"}
    store.destroy(session_id)
    assert store.load(session_id) is None


def test_store_regenerate_moves_payload(store):
    old_id = store.create({"account_id": "a-1"})
    new_id = store.regenerate(old_id, {"account_id": "a-1", "extra": True})
    assert new_id != old_id
    assert store.load(old_id) is None
    assert store.load(new_id) == {"account_id": "a-1", "extra": True}


def test_memory_store_expires_sessions():
    store = MemorySessionStore(ttl_seconds=0)
    session_id = store.create({"account_id": "a-1"})
    assert store.load(session_id) is None
    assert len(store) == 0


def test_memory_store_sweeps_expired_sessions_on_save():
    store = MemorySessionStore(ttl_seconds=1)
    abandoned = [store.create({"_flash": {"errors": {}}}) for _ in range(5)]
    assert len(store) == 5
    time.sleep(1.1)
    kept = store.create({"account_id": "a-1"})
    assert len(store) == 1
    assert store.load(kept) == {"account_id": "a-1"}
    assert all(store.load(session_id) is None for session_id in abandoned)


def test_redis_store_keys_by_digest():
    client = fakeredis.FakeStrictRedis()
    store = RedisSessionStore(client, ttl_seconds=60, key_prefix="s")
    session_id = store.create({"account_id": "a-1"})
    assert client.exists(f"s:{hash_session_id(session_id)}")
    assert not client.exists(f"s:{session_id}")
    assert 0 < client.ttl(f"s:{hash_session_id(session_id)}") <= 60


def test_authenticator_ignores_unknown_cookie(store):
    auth = SessionAuthenticator(store, "forged")
    assert auth.current_identity() is None
    assert auth.session_id is None

    response = Response()
    auth.commit()
    auth.apply_cookie(response, cookie_name="sid", max_age=60, secure=False)
    assert 'sid=""' in response.headers["set-cookie"]


def test_login_issues_new_session_id(store):
    pre_login_id = store.create({"_flash": {"status": "hello"}})
    auth = SessionAuthenticator(store, pre_login_id)
    auth.login("a-1")
    auth.commit()

    assert auth.session_id != pre_login_id
    assert store.load(pre_login_id) is None
    assert store.load(auth.session_id)["account_id"] == "a-1"

    response = Response()
    auth.apply_cookie(response, cookie_name="sid", max_age=60, secure=False)
    assert f"sid={auth.session_id}" in response.headers["set-cookie"]


def test_forced_logout_destroys_session_and_keeps_flash(store):
    session_id = store.create({"account_id": "a-1"})
    auth = SessionAuthenticator(store, session_id)

    auth.logout()
    auth.invalidate_session()
    auth.regenerate_session_id()
    auth.flash("errors", {"email": ["blocked"]})
    auth.commit()

    assert store.load(session_id) is None
    assert auth.current_identity() is None
    next_request = SessionAuthenticator(store, auth.session_id)
    assert next_request.current_identity() is None
    assert next_request.pull_flash() == {"errors": {"email": ["blocked"]}}
    next_request.commit()
    assert SessionAuthenticator(store, auth.session_id).pull_flash() == {}


def test_unchanged_session_sets_no_cookie(store):
    session_id = store.create({"account_id": "a-1"})
    auth = SessionAuthenticator(store, session_id)
    assert auth.current_identity() == "a-1"
    auth.commit()
    response = Response()
    auth.apply_cookie(response, cookie_name="sid", max_age=60, secure=False)
    assert "set-cookie" not in response.headers
