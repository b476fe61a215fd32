from __future__ import annotations

from conftest import FakeEmbedder, StaticFeed

from rag_chat.ingest import IngestionPipeline, chunk_point_id
from rag_chat.models import Article
from rag_chat.vector_store import InMemoryVectorStore

ARTICLES = [
    Article("First", "https://example.com/1", "A1. A2. A3. A4."),
    Article("Second", "https://example.com/2", "B1. B2. B3. B4."),
]


def test_every_chunk_is_stored_with_payload():
    store = InMemoryVectorStore()
    pipeline = IngestionPipeline(FakeEmbedder(), store, StaticFeed(ARTICLES), window_size=3)

    report = pipeline.ingest("https://feeds.test/top", "news", max_articles=10)

    assert report.count == 4
    assert report.articles == 2
    assert report.recreated is True
    assert store.count("news") == 4
    hits = store.search("news", FakeEmbedder().embed("A1. A2. A3.").value, top_k=1)
    assert hits[0].record.payload == {
        "title": "First",
        "url": "https://example.com/1",
        "text": "A1. A2. A3.",
        "chunk": "0-0",
    }


def test_failed_embeddings_are_skipped_not_fatal():
    store = InMemoryVectorStore()
    embedder = FakeEmbedder(fail_on={"B1. B2. B3."})
    pipeline = IngestionPipeline(embedder, store, StaticFeed(ARTICLES))

    report = pipeline.ingest("https://feeds.test/top", "news", max_articles=10)

    assert report.count == 3
    assert report.skipped == 1
    assert report.failed_chunks == ["1-0"]
    assert store.count("news") == 3


def test_max_articles_limits_what_is_fetched():
    feed = StaticFeed(ARTICLES)
    store = InMemoryVectorStore()
    report = IngestionPipeline(FakeEmbedder(), store, feed).ingest("u", "news", max_articles=1)
    assert report.articles == 1
    assert report.count == 2
    assert feed.requests == [("u", 1)]


def test_reingest_overwrites_points_in_place():
    store = InMemoryVectorStore()
    pipeline = IngestionPipeline(FakeEmbedder(), store, StaticFeed(ARTICLES))
    pipeline.ingest("u", "news", max_articles=10)
    report = pipeline.ingest("u", "news", max_articles=10)
    assert report.recreated is False
    assert store.count("news") == 4


def test_collection_with_wrong_dimension_is_recreated():
    store = InMemoryVectorStore()
    store.create_collection("news", 8)
    report = IngestionPipeline(FakeEmbedder(dim=4), store, StaticFeed(ARTICLES)).ingest("u", "news", 10)
    assert report.recreated is True
    assert store.collection_info("news").dimension == 4


def test_empty_feed_creates_collection_without_points():
    store = InMemoryVectorStore()
    report = IngestionPipeline(FakeEmbedder(), store, StaticFeed([])).ingest("u", "news", 10)
    assert report.count == 0
    assert store.count("news") == 0


def test_point_ids_are_stable_per_position():
    assert chunk_point_id("news", 0, 1) == chunk_point_id("news", 0, 1)
    assert chunk_point_id("news", 0, 1) != chunk_point_id("news", 1, 0)
    assert chunk_point_id("news", 0, 1) != chunk_point_id("other", 0, 1)


class BatchRecordingEmbedder(FakeEmbedder):
    def __init__(self):
        super().__init__()
        self.batches = []

    def embed_many(self, texts):
        self.batches.append(list(texts))
        return super().embed_many(texts)


def test_chunks_are_embedded_one_batch_per_article():
    embedder = BatchRecordingEmbedder()
    IngestionPipeline(embedder, InMemoryVectorStore(), StaticFeed(ARTICLES)).ingest("u", "news", 10)
    assert embedder.batches == [["A1. A2. A3.", "A4."], ["B1. B2. B3.", "B4."]]
