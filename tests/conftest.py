"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import hashlib
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from rag_chat.embeddings import Embedder  # noqa: E402
from rag_chat.errors import EmbeddingError, EmptyInputError, GenerationError  # noqa: E402
from rag_chat.generation import UNAVAILABLE_REPLY, Generator  # noqa: E402
from rag_chat.models import Article  # noqa: E402
from rag_chat.results import Result  # noqa: E402
from rag_chat.sessions import DiskSessionStore  # noqa: E402
from rag_chat.vector_store import InMemoryVectorStore  # noqa: E402

DIM = 4


class FakeEmbedder(Embedder):
    """Deterministic 4-d embeddings; texts listed in ``fail_on`` fail like an upstream error."""

    def __init__(self, fail_on: Optional[set] = None, dim: int = DIM):
        self.fail_on = set(fail_on or ())
        self._dim = dim
        self.calls: List[str] = []

    @property
    def dimension(self) -> int:
        return self._dim

    def embed(self, text: str) -> Result[List[float]]:
        self.calls.append(text)
        if not text or not text.strip():
            return Result.failure(EmptyInputError("Text cannot be empty"))
        if text in self.fail_on:
            return Result.failure(EmbeddingError("boom"))
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return Result.success([b / 255.0 + 0.01 for b in digest[: self._dim]])


class SpyGenerator(Generator):
    """Records prompts; replies with ``reply`` or fails with the fallback text."""

    def __init__(self, reply: str = "ok", fail: bool = False):
        self.reply = reply
        self.fail = fail
        self.prompts: List[str] = []

    @property
    def last_prompt(self) -> Optional[str]:
        return self.prompts[-1] if self.prompts else None

    def complete(self, prompt: str) -> Result[str]:
        self.prompts.append(prompt)
        if self.fail:
            return Result.failure(GenerationError("down"), fallback=UNAVAILABLE_REPLY)
        return Result.success(self.reply)


class StaticFeed:
    def __init__(self, articles: List[Article]):
        self.articles = articles
        self.requests: List[tuple] = []

    def fetch(self, url: str, limit: Optional[int] = None) -> List[Article]:
        self.requests.append((url, limit))
        return list(self.articles[:limit] if limit is not None else self.articles)


class FakeRedis:
    """The slice of redis.Redis the session store uses."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.expiry: Dict[str, int] = {}
        self.locks: List[str] = []
        self._lock = threading.Lock()

    def get(self, name):
        return self.data.get(name)

    def set(self, name, value, ex=None):
        self.data[name] = value
        if ex is not None:
            self.expiry[name] = ex
        return True

    def delete(self, *names):
        n = 0
        for name in names:
            n += int(self.data.pop(name, None) is not None)
            self.expiry.pop(name, None)
        return n

    def exists(self, *names):
        return sum(1 for n in names if n in self.data)

    def ping(self):
        return True

    def lock(self, name, timeout=None, blocking_timeout=None):
        self.locks.append(name)
        return self._lock


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for session files during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in [
        "RAG_CHAT_CONFIG", "RAG_CHAT_ENV", "NODE_ENV", "JINA_API_KEY", "GEMINI_API_KEY",
        "QDRANT_URL", "REDIS_URL", "FRONTEND_URL", "PORT",
    ]:
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def generator() -> SpyGenerator:
    return SpyGenerator()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def sessions(tmp_data_dir: Path) -> DiskSessionStore:
    return DiskSessionStore(str(tmp_data_dir))


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
