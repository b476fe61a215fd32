from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from rag_chat.config import VectorStoreSettings
from rag_chat.errors import CollectionNotFoundError, DimensionMismatchError, VectorStoreError
from rag_chat.models import VectorRecord
from rag_chat.vector_store import QdrantVectorStore


def _info(size: int, points: int = 0) -> dict:
    return {
        "result": {
            "status": "green",
            "points_count": points,
            "config": {"params": {"vectors": {"size": size, "distance": "Cosine"}}},
        },
        "status": "ok",
    }


def _store(handler) -> QdrantVectorStore:
    client = httpx.Client(base_url="http://qdrant:6333", transport=httpx.MockTransport(handler))
    return QdrantVectorStore(VectorStoreSettings(url="http://qdrant:6333"), client=client)


def test_create_collection_sends_size_and_distance():
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": True, "status": "ok"})

    store = _store(handler)
    store.create_collection("news_articles", 1024)

    assert seen[0].method == "PUT"
    assert seen[0].url.path == "/collections/news_articles"
    assert json.loads(seen[0].content) == {"vectors": {"size": 1024, "distance": "Cosine"}}


def test_create_existing_collection_is_not_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"status": {"error": "Collection `news` already exists!"}})

    _store(handler).create_collection("news", 4)


def test_delete_missing_collection_is_not_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"status": {"error": "Not found"}})

    _store(handler).delete_collection("news")


def test_collection_info_reads_dimension_or_none():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/collections/news":
            return httpx.Response(200, json=_info(4, points=7))
        return httpx.Response(404, json={})

    store = _store(handler)
    info = store.collection_info("news")
    assert info.dimension == 4
    assert info.points_count == 7
    assert store.collection_info("other") is None


def test_search_returns_scored_records_with_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=_info(3))
        body = json.loads(request.content)
        assert request.url.path == "/collections/news/points/search"
        assert body["limit"] == 2
        assert body["with_payload"] is True
        return httpx.Response(
            200,
            json={
                "result": [
                    {"id": "p2", "score": 0.4, "payload": {"text": "second"}},
                    {"id": "p1", "score": 0.9, "payload": {"text": "first"}},
                ]
            },
        )

    hits = _store(handler).search("news", [0.1, 0.2, 0.3], top_k=2)
    assert [h.text for h in hits] == ["first", "second"]
    assert hits[0].score == pytest.approx(0.9)


def test_upsert_validates_dimension_before_sending():
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=_info(3))
        sent.append(request)
        return httpx.Response(200, json={"result": {"status": "completed"}})

    store = _store(handler)
    with pytest.raises(DimensionMismatchError):
        store.upsert("news", [VectorRecord("a", [1.0, 2.0, 3.0]), VectorRecord("b", [1.0])])
    assert sent == []

    store.upsert("news", [VectorRecord("a", [1.0, 2.0, 3.0], {"text": "t"})])
    assert len(sent) == 1
    assert sent[0].url.params["wait"] == "true"
    assert json.loads(sent[0].content)["points"][0]["payload"] == {"text": "t"}


def test_search_on_missing_collection_raises_not_found():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={})

    with pytest.raises(CollectionNotFoundError):
        _store(handler).search("news", [0.1], top_k=1)


def test_transport_errors_become_vector_store_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    store = _store(handler)
    with pytest.raises(VectorStoreError):
        store.create_collection("news", 3)
    assert store.ping() is False


def test_ensure_collection_recreates_on_mismatch():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        if request.method == "GET":
            return httpx.Response(200, json=_info(768))
        return httpx.Response(200, json={"result": True})

    assert _store(handler).ensure_collection("news", 1024) is True
    assert calls == ["GET", "DELETE", "PUT"]
