"""Session history stores with sliding expiry (Redis-backed or on disk)."""
from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Sequence

import redis

from .errors import SessionNotFoundError, SessionStoreError
from .models import Message, messages_to_dicts

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60 * 24
DEFAULT_PREFIX = "chat:"
LOCK_STRIPES = 64


# -----------------------------
# Helpers
# -----------------------------
def _encode(messages: Sequence[Message]) -> str:
    return json.dumps(messages_to_dicts(list(messages)), ensure_ascii=False)


def _parse_messages(raw: Any) -> Optional[List[Message]]:
    if not isinstance(raw, list) or not all(isinstance(m, dict) for m in raw):
        return None
    return [Message.from_dict(m) for m in raw]


def _decode(blob: Any) -> Optional[List[Message]]:
    """Parse a stored history blob; None means corrupt."""
    if isinstance(blob, bytes):
        blob = blob.decode("utf-8", errors="replace")
    try:
        return _parse_messages(json.loads(blob))
    except (TypeError, ValueError):
        return None


def _file_stem(session_id: str) -> str:
    # Distinct ids must never share a file, so hash rather than sanitise.
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


def new_session_id() -> str:
    return str(uuid.uuid4())


class SessionStore(ABC):
    """Ordered message history per session id, expiring ``ttl_seconds`` after the last write."""

    ttl_seconds: int = DEFAULT_TTL_SECONDS

    @abstractmethod
    def create_session(self) -> str:
        ...

    @abstractmethod
    def get_history(self, session_id: str) -> List[Message]:
        ...

    @abstractmethod
    def append_messages(self, session_id: str, messages: Sequence[Message]) -> List[Message]:
        """Append and re-persist with a fresh expiry; returns the new history."""

    @abstractmethod
    def reset_history(self, session_id: str) -> None:
        ...

    @abstractmethod
    def delete_session(self, session_id: str) -> None:
        ...

    def exists(self, session_id: str) -> bool:
        try:
            self.get_history(session_id)
        except SessionNotFoundError:
            return False
        return True

    def ping(self) -> bool:
        return True


# -----------------------------
# Redis
# -----------------------------
class RedisSessionStore(SessionStore):
    """
    History kept as a JSON array under ``<prefix><session_id>`` with ``EX`` set.

    Appends hold a Redis lock on ``<key>:lock`` so two messages racing on the
    same session cannot overwrite each other.
    """

    def __init__(
        self,
        client: "redis.Redis",
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        key_prefix: str = DEFAULT_PREFIX,
        lock_timeout: float = 5.0,
    ) -> None:
        self._redis = client
        self.ttl_seconds = int(ttl_seconds)
        self.key_prefix = key_prefix
        self.lock_timeout = float(lock_timeout)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisSessionStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as e:
            logger.error("Redis %s failed: %s", op, e)
            raise SessionStoreError(f"Session store {op} failed") from e

    def _write(self, session_id: str, messages: Sequence[Message]) -> None:
        self._redis.set(self._key(session_id), _encode(messages), ex=self.ttl_seconds)

    def _read(self, session_id: str) -> List[Message]:
        blob = self._redis.get(self._key(session_id))
        if blob is None:
            raise SessionNotFoundError(session_id)
        history = _decode(blob)
        if history is None:
            logger.warning("Corrupt history blob for session %s; treating as missing", session_id)
            raise SessionNotFoundError(session_id)
        return history

    def create_session(self) -> str:
        session_id = new_session_id()
        with self._guard("create"):
            self._write(session_id, [])
        logger.info("Session created: %s", session_id)
        return session_id

    def get_history(self, session_id: str) -> List[Message]:
        with self._guard("read"):
            return self._read(session_id)

    def append_messages(self, session_id: str, messages: Sequence[Message]) -> List[Message]:
        with self._guard("append"):
            lock = self._redis.lock(
                f"{self._key(session_id)}:lock",
                timeout=self.lock_timeout,
                blocking_timeout=self.lock_timeout,
            )
            with lock:
                history = self._read(session_id) + list(messages)
                self._write(session_id, history)
        return history

    def reset_history(self, session_id: str) -> None:
        with self._guard("reset"):
            self._write(session_id, [])

    def delete_session(self, session_id: str) -> None:
        with self._guard("delete"):
            self._redis.delete(self._key(session_id))

    def exists(self, session_id: str) -> bool:
        with self._guard("exists"):
            return bool(self._redis.exists(self._key(session_id)))

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except redis.RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False


# -----------------------------
# Disk
# -----------------------------
class DiskSessionStore(SessionStore):
    """JSON-file session store for single-process deployments and tests.

    Layout:
        data_dir/
          <sha256(session_id)>.json   # {"expires_at": <epoch seconds>, "messages": [...]}

    Expired files are removed on access. Unreadable files are moved aside
    to ``<sha256>.corrupt.json`` and the session counts as missing. Writers
    on one session are serialised through a fixed pool of striped locks, so
    lookups of unknown ids leave nothing behind.
    """

    def __init__(
        self,
        data_dir: str,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = Path(data_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.ttl_seconds = int(ttl_seconds)
        self._clock = clock
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    # --------- paths & locks ----------
    def _path(self, session_id: str) -> Path:
        return self.root / f"{_file_stem(session_id)}.json"

    def _session_lock(self, session_id: str) -> threading.Lock:
        return self._locks[int(_file_stem(session_id)[:8], 16) % len(self._locks)]

    # --------- internals ----------
    def _write(self, session_id: str, messages: Sequence[Message]) -> None:
        envelope = {
            "expires_at": self._clock() + self.ttl_seconds,
            "messages": messages_to_dicts(list(messages)),
        }
        _atomic_write_text(self._path(session_id), json.dumps(envelope, ensure_ascii=False, indent=2))

    def _read(self, session_id: str) -> List[Message]:
        path = self._path(session_id)
        if not path.exists():
            raise SessionNotFoundError(session_id)
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
            expires_at = float(envelope["expires_at"])
            history = _parse_messages(envelope["messages"])
        except (OSError, ValueError, KeyError, TypeError):
            history = None
            expires_at = 0.0
        if history is None:
            logger.warning("Corrupt session file %s; moving aside", path)
            self._quarantine(path)
            raise SessionNotFoundError(session_id)
        if expires_at <= self._clock():
            path.unlink(missing_ok=True)
            raise SessionNotFoundError(session_id)
        return history

    def _quarantine(self, path: Path) -> None:
        try:
            os.replace(path, path.with_suffix(".corrupt.json"))
        except OSError as e:
            logger.warning("Could not move corrupt session file %s: %s", path, e)

    # --------- core API ----------
    def create_session(self) -> str:
        session_id = new_session_id()
        self._write(session_id, [])
        logger.info("Session created: %s", session_id)
        return session_id

    def get_history(self, session_id: str) -> List[Message]:
        with self._session_lock(session_id):
            return self._read(session_id)

    def append_messages(self, session_id: str, messages: Sequence[Message]) -> List[Message]:
        with self._session_lock(session_id):
            history = self._read(session_id) + list(messages)
            self._write(session_id, history)
            return history

    def reset_history(self, session_id: str) -> None:
        with self._session_lock(session_id):
            self._write(session_id, [])

    def delete_session(self, session_id: str) -> None:
        with self._session_lock(session_id):
            self._path(session_id).unlink(missing_ok=True)
