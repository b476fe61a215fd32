"""News ingestion: feed → sentence windows → embeddings → vector store."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from .chunking import DEFAULT_WINDOW, chunk_text
from .embeddings import Embedder
from .models import Article, VectorRecord
from .vector_store import COSINE, VectorStore

logger = logging.getLogger(__name__)


class ArticleSource(Protocol):
    def fetch(self, url: str, limit: Optional[int] = None) -> List[Article]:
        ...


def chunk_point_id(collection: str, article_index: int, chunk_index: int) -> str:
    """Stable point id for a chunk position, so re-ingesting overwrites in place."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{collection}:{article_index}-{chunk_index}"))


@dataclass
class IngestReport:
    count: int = 0
    skipped: int = 0
    articles: int = 0
    recreated: bool = False
    failed_chunks: List[str] = field(default_factory=list)


class IngestionPipeline:
    """
    Best-effort per chunk, all-or-nothing for setup.

    A feed or collection failure aborts the run by raising. A chunk whose
    embedding fails is logged and skipped; the rest are still stored.
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        source: ArticleSource,
        *,
        window_size: int = DEFAULT_WINDOW,
    ) -> None:
        self.embedder = embedder
        self.vector_store = vector_store
        self.source = source
        self.window_size = window_size

    def ingest(self, feed_url: str, collection: str, max_articles: int) -> IngestReport:
        articles = self.source.fetch(feed_url, limit=max_articles)[: max(0, max_articles)]
        recreated = self.vector_store.ensure_collection(collection, self.embedder.dimension, COSINE)

        report = IngestReport(articles=len(articles), recreated=recreated)
        points: List[VectorRecord] = []
        for i, article in enumerate(articles):
            chunks = chunk_text(article.text, self.window_size)
            for j, (chunk, result) in enumerate(zip(chunks, self.embedder.embed_many(chunks))):
                if not result.ok:
                    logger.warning("Skipping chunk %d-%d of %r: %s", i, j, article.title, result.error)
                    report.skipped += 1
                    report.failed_chunks.append(f"{i}-{j}")
                    continue
                points.append(
                    VectorRecord(
                        id=chunk_point_id(collection, i, j),
                        vector=result.value,
                        payload={"title": article.title, "url": article.link, "text": chunk, "chunk": f"{i}-{j}"},
                    )
                )

        if points:
            self.vector_store.upsert(collection, points)
        report.count = len(points)
        logger.info(
            "News ingestion complete: %d chunk(s) stored, %d skipped, %d article(s) into %s",
            report.count, report.skipped, report.articles, collection,
        )
        return report
