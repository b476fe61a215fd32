from __future__ import annotations

import json
import uuid
from pathlib import Path

import pytest
import redis

from rag_chat.errors import SessionNotFoundError, SessionStoreError
from rag_chat.models import Message
from rag_chat.sessions import LOCK_STRIPES, DiskSessionStore, RedisSessionStore


class Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# -----------------------------
# Disk store
# -----------------------------
def test_new_session_has_empty_history(sessions: DiskSessionStore):
    sid = sessions.create_session()
    assert sessions.get_history(sid) == []
    assert sessions.exists(sid)


def test_session_ids_are_unique(sessions: DiskSessionStore):
    ids = {sessions.create_session() for _ in range(20)}
    assert len(ids) == 20


def test_append_keeps_order_and_returns_history(sessions: DiskSessionStore):
    sid = sessions.create_session()
    sessions.append_messages(sid, [Message.user("hi"), Message.assistant("hello")])
    updated = sessions.append_messages(sid, [Message.user("news?"), Message.assistant("none")])
    assert [m.content for m in updated] == ["hi", "hello", "news?", "none"]
    assert sessions.get_history(sid) == updated


def test_unknown_session_is_not_found(sessions: DiskSessionStore):
    with pytest.raises(SessionNotFoundError):
        sessions.get_history("unknown-id")
    with pytest.raises(SessionNotFoundError):
        sessions.append_messages("unknown-id", [Message.user("x")])
    assert not sessions.exists("unknown-id")


def test_reset_creates_or_clears(sessions: DiskSessionStore):
    sessions.reset_history("abc")
    assert sessions.get_history("abc") == []
    sessions.append_messages("abc", [Message.user("a")])
    sessions.reset_history("abc")
    assert sessions.get_history("abc") == []


def test_history_expires_after_ttl_and_writes_slide_it(tmp_path: Path):
    clock = Clock()
    store = DiskSessionStore(str(tmp_path), ttl_seconds=100, clock=clock)
    sid = store.create_session()

    clock.now += 90
    store.append_messages(sid, [Message.user("still here")])
    clock.now += 90
    assert [m.content for m in store.get_history(sid)] == ["still here"]

    clock.now += 11
    with pytest.raises(SessionNotFoundError):
        store.get_history(sid)
    assert list(tmp_path.glob("*.json")) == []


def test_corrupt_file_is_moved_aside(tmp_path: Path):
    store = DiskSessionStore(str(tmp_path))
    path = store._path("broken")
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(SessionNotFoundError):
        store.get_history("broken")
    assert not path.exists()
    assert path.with_suffix(".corrupt.json").exists()
    assert not store.exists("broken")


@pytest.mark.parametrize("first,second", [("a b", "a_b"), ("x/y", "x_y"), ("s" * 200, "s" * 201)])
def test_similar_ids_never_share_history(sessions: DiskSessionStore, first: str, second: str):
    sessions.reset_history(first)
    sessions.append_messages(first, [Message.user("secret")])
    with pytest.raises(SessionNotFoundError):
        sessions.get_history(second)
    sessions.reset_history(second)
    assert sessions.get_history(second) == []
    assert sessions.get_history(first) == [Message.user("secret")]


def test_lookups_of_unknown_ids_do_not_grow_lock_table(sessions: DiskSessionStore):
    for _ in range(1000):
        with pytest.raises(SessionNotFoundError):
            sessions.get_history(str(uuid.uuid4()))
    assert len(sessions._locks) == LOCK_STRIPES
    assert sessions._session_lock("abc") is sessions._session_lock("abc")


def test_delete_session(sessions: DiskSessionStore):
    sid = sessions.create_session()
    sessions.delete_session(sid)
    sessions.delete_session(sid)
    assert not sessions.exists(sid)


# -----------------------------
# Redis store
# -----------------------------
def test_redis_store_writes_json_with_expiry(fake_redis):
    store = RedisSessionStore(fake_redis, ttl_seconds=3600)
    sid = store.create_session()
    key = f"chat:{sid}"
    assert json.loads(fake_redis.data[key]) == []
    assert fake_redis.expiry[key] == 3600

    history = store.append_messages(sid, [Message.user("hi"), Message.assistant("yo")])
    assert [m.role for m in history] == ["user", "assistant"]
    assert json.loads(fake_redis.data[key]) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "yo"},
    ]
    assert fake_redis.locks == [f"{key}:lock"]


def test_redis_store_missing_and_corrupt_blobs_are_not_found(fake_redis):
    store = RedisSessionStore(fake_redis)
    with pytest.raises(SessionNotFoundError):
        store.get_history("nope")
    fake_redis.data["chat:bad"] = "{oops"
    with pytest.raises(SessionNotFoundError):
        store.get_history("bad")
    fake_redis.data["chat:obj"] = json.dumps({"role": "user"})
    with pytest.raises(SessionNotFoundError):
        store.get_history("obj")


def test_redis_store_reset_delete_and_exists(fake_redis):
    store = RedisSessionStore(fake_redis, key_prefix="s:")
    store.reset_history("abc")
    assert store.exists("abc")
    assert fake_redis.data["s:abc"] == "[]"
    store.delete_session("abc")
    assert not store.exists("abc")
    assert store.ping() is True


def test_redis_errors_become_session_store_errors(fake_redis):
    def boom(*args, **kwargs):
        raise redis.ConnectionError("down")

    fake_redis.get = boom
    fake_redis.ping = boom
    store = RedisSessionStore(fake_redis)
    with pytest.raises(SessionStoreError):
        store.get_history("abc")
    assert store.ping() is False
