"""Configuration loading utilities for the RAG chat server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable RAG_CHAT_CONFIG
3. Fallback to "config/default.yaml"

The file is merged over built-in defaults. It also supports overrides from
environment variables with prefix ``RAG_CHAT__`` (e.g.,
RAG_CHAT__CHAT__TOP_K=5) and the well-known variables of the deployment
(``JINA_API_KEY``, ``GEMINI_API_KEY``, ``QDRANT_URL``, ``REDIS_URL``,
``FRONTEND_URL``, ``PORT``, ``NODE_ENV``). A ``.env`` file is read first.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "RAG_CHAT__"
DEFAULT_CONFIG_PATH = "config/default.yaml"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful news assistant. Use the following context to answer the question. "
    "If you don't know the answer, say you don't know. Be concise and accurate."
)

DEFAULTS: Dict[str, Any] = {
    "server": {
        "host": "127.0.0.1",
        "port": 3000,
        "cors_origins": ["http://localhost:3000"],
        "development": False,
        "api_prefixes": ["", "/chat", "/api/chat"],
        "log_level": "INFO",
    },
    "embedding": {
        "url": "https://api.jina.ai/v1/embeddings",
        "model": "jina-embeddings-v3",
        "api_key": None,
        "dimension": 1024,
        "timeout": 20.0,
    },
    "generation": {
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "model": "gemini-pro",
        "api_key": None,
        "timeout": 60.0,
    },
    "vector_store": {
        "backend": "qdrant",  # qdrant|memory
        "url": "http://localhost:6333",
        "api_key": None,
        "timeout": 10.0,
    },
    "sessions": {
        "backend": "redis",  # redis|disk
        "redis_url": "redis://localhost:6379",
        "data_dir": "data/sessions",
        "ttl_seconds": 60 * 60 * 24,
        "key_prefix": "chat:",
        "lock_timeout": 5.0,
    },
    "ingest": {
        "feed_url": "http://feeds.reuters.com/reuters/topNews",
        "max_articles": 50,
        "window_size": 3,
        "timeout": 15.0,
    },
    "chat": {
        "collection": "news_articles",
        "text_collection": "text_collection",
        "top_k": 3,
        "system_prompt": DEFAULT_SYSTEM_PROMPT,
    },
}


def _coerce(value: str) -> Any:
    # Attempt to parse simple types (bool, int, float)
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _set_path(cfg: Dict[str, Any], parts: List[str], value: Any) -> None:
    sub = cfg
    for p in parts[:-1]:
        if p not in sub or not isinstance(sub[p], dict):
            sub[p] = {}
        sub = sub[p]
    sub[parts[-1]] = value


def _deep_merge(base: Dict[str, Any], other: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in other.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix RAG_CHAT__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., RAG_CHAT__SESSIONS__REDIS_URL -> cfg["sessions"]["redis_url"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        _set_path(cfg, parts, _coerce(value))
    return cfg


def _apply_well_known_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Map the plain deployment variables onto config keys."""
    env = os.environ
    if env.get("JINA_API_KEY"):
        _set_path(cfg, ["embedding", "api_key"], env["JINA_API_KEY"])
    if env.get("GEMINI_API_KEY"):
        _set_path(cfg, ["generation", "api_key"], env["GEMINI_API_KEY"])
    if env.get("QDRANT_URL"):
        _set_path(cfg, ["vector_store", "url"], env["QDRANT_URL"])
    if env.get("REDIS_URL"):
        _set_path(cfg, ["sessions", "redis_url"], env["REDIS_URL"])
    if env.get("FRONTEND_URL"):
        _set_path(cfg, ["server", "cors_origins"], [env["FRONTEND_URL"]])
    if env.get("PORT"):
        try:
            _set_path(cfg, ["server", "port"], int(env["PORT"]))
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {env['PORT']!r}")
    run_env = env.get("RAG_CHAT_ENV") or env.get("NODE_ENV")
    if run_env:
        _set_path(cfg, ["server", "development"], run_env.lower() == "development")
    return cfg


def load_config(path: str | None = None, *, use_dotenv: bool = True) -> Dict[str, Any]:
    """Load YAML configuration for the chat server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``RAG_CHAT_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.
    use_dotenv : bool
        Read a ``.env`` file from the working directory before looking at
        the environment. Existing variables are never overwritten.

    Returns
    -------
    Dict[str, Any]
        Defaults merged with the file, with environment overrides applied.
    """
    if use_dotenv:
        load_dotenv(override=False)

    # Resolve path precedence
    if path is None:
        path = os.environ.get("RAG_CHAT_CONFIG", DEFAULT_CONFIG_PATH)

    path_obj = Path(path)
    file_cfg: Dict[str, Any] = {}
    if not path_obj.exists():
        logger.warning("Config file not found at %s; using defaults.", path_obj)
    else:
        with path_obj.open("r", encoding="utf-8") as f:
            try:
                file_cfg = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Failed to parse config file {path_obj}: {e}")

        if not isinstance(file_cfg, dict):
            raise ConfigError(f"Invalid config format in {path_obj}, expected dict.")

    cfg = _deep_merge(DEFAULTS, file_cfg)
    cfg = _apply_env_overrides(cfg)
    return _apply_well_known_env(cfg)


# -----------------------------
# Typed sections
# -----------------------------
@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    development: bool = False
    api_prefixes: List[str] = field(default_factory=lambda: ["", "/chat", "/api/chat"])
    log_level: str = "INFO"


@dataclass
class EmbeddingSettings:
    url: str = "https://api.jina.ai/v1/embeddings"
    model: str = "jina-embeddings-v3"
    api_key: Optional[str] = None
    dimension: int = 1024
    timeout: float = 20.0


@dataclass
class GenerationSettings:
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-pro"
    api_key: Optional[str] = None
    timeout: float = 60.0


@dataclass
class VectorStoreSettings:
    backend: str = "qdrant"
    url: Optional[str] = "http://localhost:6333"
    api_key: Optional[str] = None
    timeout: float = 10.0


@dataclass
class SessionSettings:
    backend: str = "redis"
    redis_url: Optional[str] = "redis://localhost:6379"
    data_dir: str = "data/sessions"
    ttl_seconds: int = 60 * 60 * 24
    key_prefix: str = "chat:"
    lock_timeout: float = 5.0


@dataclass
class IngestSettings:
    feed_url: str = "http://feeds.reuters.com/reuters/topNews"
    max_articles: int = 50
    window_size: int = 3
    timeout: float = 15.0


@dataclass
class ChatSettings:
    collection: str = "news_articles"
    text_collection: str = "text_collection"
    top_k: int = 3
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


def _section(cls, raw: Any):
    raw = raw if isinstance(raw, dict) else {}
    known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
    return cls(**known)


@dataclass
class Settings:
    server: ServerSettings = field(default_factory=ServerSettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    vector_store: VectorStoreSettings = field(default_factory=VectorStoreSettings)
    sessions: SessionSettings = field(default_factory=SessionSettings)
    ingest: IngestSettings = field(default_factory=IngestSettings)
    chat: ChatSettings = field(default_factory=ChatSettings)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "Settings":
        cfg = cfg or {}
        return cls(
            server=_section(ServerSettings, cfg.get("server")),
            embedding=_section(EmbeddingSettings, cfg.get("embedding")),
            generation=_section(GenerationSettings, cfg.get("generation")),
            vector_store=_section(VectorStoreSettings, cfg.get("vector_store")),
            sessions=_section(SessionSettings, cfg.get("sessions")),
            ingest=_section(IngestSettings, cfg.get("ingest")),
            chat=_section(ChatSettings, cfg.get("chat")),
        )

    @classmethod
    def load(cls, path: str | None = None) -> "Settings":
        return cls.from_config(load_config(path))

    def missing_keys(self) -> List[str]:
        """Return dotted names of required keys that are unset."""
        missing: List[str] = []
        if not self.embedding.api_key:
            missing.append("embedding.api_key (JINA_API_KEY)")
        if not self.generation.api_key:
            missing.append("generation.api_key (GEMINI_API_KEY)")
        if self.vector_store.backend == "qdrant" and not self.vector_store.url:
            missing.append("vector_store.url (QDRANT_URL)")
        if self.sessions.backend == "redis" and not self.sessions.redis_url:
            missing.append("sessions.redis_url (REDIS_URL)")
        return missing

    def validate(self) -> "Settings":
        """Fail fast when a required credential or endpoint is absent."""
        missing = self.missing_keys()
        if missing:
            raise ConfigError("Missing required configuration: " + ", ".join(missing))
        if self.vector_store.backend not in {"qdrant", "memory"}:
            raise ConfigError(f"Unknown vector_store.backend: {self.vector_store.backend!r}")
        if self.sessions.backend not in {"redis", "disk"}:
            raise ConfigError(f"Unknown sessions.backend: {self.sessions.backend!r}")
        if self.chat.top_k < 1:
            raise ConfigError("chat.top_k must be >= 1")
        return self


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger (idempotent)."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
