"""Explicitly constructed service handles shared by the HTTP and socket layers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .embeddings import Embedder, JinaEmbeddingClient
from .feeds import FeedReader
from .generation import GeminiClient, Generator
from .ingest import ArticleSource, IngestionPipeline
from .orchestrator import ChatOrchestrator
from .sessions import DiskSessionStore, RedisSessionStore, SessionStore
from .vector_store import InMemoryVectorStore, QdrantVectorStore, VectorStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    sessions: SessionStore
    embedder: Embedder
    vector_store: VectorStore
    generator: Generator
    feed_reader: ArticleSource

    def orchestrator(self) -> ChatOrchestrator:
        chat = self.settings.chat
        return ChatOrchestrator(
            self.sessions,
            self.embedder,
            self.vector_store,
            self.generator,
            collection=chat.collection,
            text_collection=chat.text_collection,
            top_k=chat.top_k,
            system_prompt=chat.system_prompt,
        )

    def ingestion(self) -> IngestionPipeline:
        return IngestionPipeline(
            self.embedder,
            self.vector_store,
            self.feed_reader,
            window_size=self.settings.ingest.window_size,
        )

    def close(self) -> None:
        for handle in (self.embedder, self.vector_store, self.generator, self.feed_reader):
            close = getattr(handle, "close", None)
            if callable(close):
                close()


def _make_sessions(settings: Settings) -> SessionStore:
    cfg = settings.sessions
    if cfg.backend == "disk":
        return DiskSessionStore(cfg.data_dir, ttl_seconds=cfg.ttl_seconds)
    return RedisSessionStore.from_url(
        cfg.redis_url,
        ttl_seconds=cfg.ttl_seconds,
        key_prefix=cfg.key_prefix,
        lock_timeout=cfg.lock_timeout,
    )


def _make_vector_store(settings: Settings) -> VectorStore:
    if settings.vector_store.backend == "memory":
        return InMemoryVectorStore()
    return QdrantVectorStore(settings.vector_store)


def build_services(
    settings: Settings,
    *,
    sessions: Optional[SessionStore] = None,
    embedder: Optional[Embedder] = None,
    vector_store: Optional[VectorStore] = None,
    generator: Optional[Generator] = None,
    feed_reader: Optional[ArticleSource] = None,
) -> Services:
    """Build every handle from ``settings``; any argument given is used as-is.

    Settings are validated (fail fast) only when at least one real upstream
    client has to be constructed from them.
    """
    if None in (sessions, embedder, vector_store, generator):
        settings.validate()

    services = Services(
        settings=settings,
        sessions=sessions or _make_sessions(settings),
        embedder=embedder or JinaEmbeddingClient(settings.embedding),
        vector_store=vector_store or _make_vector_store(settings),
        generator=generator or GeminiClient(settings.generation),
        feed_reader=feed_reader or FeedReader(timeout=settings.ingest.timeout),
    )
    logger.info(
        "Services ready: sessions=%s vector_store=%s",
        type(services.sessions).__name__,
        type(services.vector_store).__name__,
    )
    return services
