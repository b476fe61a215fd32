"""Vector store clients: Qdrant over REST, and an in-process numpy store."""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx
import numpy as np

from .config import VectorStoreSettings
from .errors import CollectionNotFoundError, DimensionMismatchError, VectorStoreError
from .models import CollectionInfo, ScoredRecord, VectorRecord

logger = logging.getLogger(__name__)

COSINE = "cosine"
_QDRANT_DISTANCES = {"cosine": "Cosine", "dot": "Dot", "euclid": "Euclid"}


def _check_dimensions(records: Sequence[VectorRecord], dimension: int) -> None:
    # Whole batch is validated before anything is written.
    for rec in records:
        if len(rec.vector) != dimension:
            raise DimensionMismatchError(dimension, len(rec.vector), record_id=rec.id)


class VectorStore(ABC):
    """Named collections of (id, vector, payload) points searched by similarity."""

    @abstractmethod
    def create_collection(self, name: str, dimension: int, metric: str = COSINE) -> None:
        """Create ``name``; an existing collection is left untouched."""

    @abstractmethod
    def delete_collection(self, name: str) -> None:
        """Drop ``name``; a missing collection is not an error."""

    @abstractmethod
    def collection_info(self, name: str) -> Optional[CollectionInfo]:
        """Return the collection's shape, or None when it does not exist."""

    @abstractmethod
    def upsert(self, name: str, records: Sequence[VectorRecord]) -> None:
        ...

    @abstractmethod
    def search(self, name: str, query_vector: Sequence[float], top_k: int) -> List[ScoredRecord]:
        ...

    def ping(self) -> bool:
        return True

    def ensure_collection(self, name: str, dimension: int, metric: str = COSINE) -> bool:
        """
        Make sure ``name`` exists with ``dimension``.

        A collection with another dimension is dropped and recreated, which
        discards its points. Returns True when a collection was (re)created.
        """
        info = self.collection_info(name)
        if info is not None and info.dimension == dimension:
            return False
        if info is not None:
            logger.warning(
                "Collection %s has dimension %d, expected %d; recreating (existing points are dropped).",
                name, info.dimension, dimension,
            )
            self.delete_collection(name)
        self.create_collection(name, dimension, metric)
        return True


# -----------------------------
# In-process store
# -----------------------------
@dataclass
class _Collection:
    dimension: int
    metric: str
    records: "OrderedDict[Any, VectorRecord]"


def _normalize(v: np.ndarray) -> np.ndarray:
    # Normalize rows to unit length for cosine via inner product
    if v.ndim == 1:
        v = v[None, :]
    norms = np.linalg.norm(v, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return v / norms


class InMemoryVectorStore(VectorStore):
    """Cosine-similarity store kept in process memory (thread-safe)."""

    def __init__(self) -> None:
        self._collections: Dict[str, _Collection] = {}
        self._lock = threading.RLock()

    def create_collection(self, name: str, dimension: int, metric: str = COSINE) -> None:
        if metric != COSINE:
            raise ValueError(f"InMemoryVectorStore only supports cosine, got {metric!r}")
        if dimension < 1:
            raise ValueError("dimension must be >= 1")
        with self._lock:
            if name in self._collections:
                logger.debug("Collection %s already exists, continuing", name)
                return
            self._collections[name] = _Collection(dimension, metric, OrderedDict())
            logger.info("Collection created: %s (dim=%d)", name, dimension)

    def delete_collection(self, name: str) -> None:
        with self._lock:
            if self._collections.pop(name, None) is not None:
                logger.info("Collection deleted: %s", name)

    def collection_info(self, name: str) -> Optional[CollectionInfo]:
        with self._lock:
            col = self._collections.get(name)
            if col is None:
                return None
            return CollectionInfo(name, col.dimension, col.metric, len(col.records))

    def _get(self, name: str) -> _Collection:
        col = self._collections.get(name)
        if col is None:
            raise CollectionNotFoundError(name)
        return col

    def upsert(self, name: str, records: Sequence[VectorRecord]) -> None:
        with self._lock:
            col = self._get(name)
            _check_dimensions(records, col.dimension)
            for rec in records:
                col.records[rec.id] = VectorRecord(rec.id, [float(x) for x in rec.vector], dict(rec.payload))

    def search(self, name: str, query_vector: Sequence[float], top_k: int) -> List[ScoredRecord]:
        with self._lock:
            col = self._get(name)
            if len(query_vector) != col.dimension:
                raise DimensionMismatchError(col.dimension, len(query_vector))
            if not col.records or top_k <= 0:
                return []
            records = list(col.records.values())

        q = np.asarray(query_vector, dtype="float32")
        if not np.any(q):
            return []
        matrix = _normalize(np.asarray([r.vector for r in records], dtype="float32"))
        scores = matrix @ _normalize(q)[0]
        # Stable sort keeps insertion order among equal scores.
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [ScoredRecord(records[i], float(scores[i])) for i in order]

    def count(self, name: str) -> int:
        with self._lock:
            return len(self._get(name).records)


# -----------------------------
# Qdrant REST store
# -----------------------------
class QdrantVectorStore(VectorStore):
    """
    Qdrant client speaking the REST API through httpx.

    Collection dimensions are cached after the first lookup so upserts and
    searches can be validated locally before hitting the server.
    """

    def __init__(
        self,
        settings: VectorStoreSettings,
        *,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings
        headers = {"api-key": settings.api_key} if settings.api_key else {}
        self._client = client or httpx.Client(
            base_url=str(settings.url or "").rstrip("/"),
            timeout=httpx.Timeout(settings.timeout, connect=5.0),
            headers=headers,
        )
        self._dims: Dict[str, int] = {}
        self._lock = threading.RLock()

    # ----------------- transport -----------------
    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Qdrant %s %s failed: %s", method, path, e)
            raise VectorStoreError(f"Qdrant request failed: {e}") from e

    @staticmethod
    def _fail(r: httpx.Response, what: str) -> VectorStoreError:
        logger.error("Qdrant %s failed (%s): %s", what, r.status_code, r.text[:300])
        return VectorStoreError(f"Qdrant {what} failed with HTTP {r.status_code}")

    # ----------------- collections -----------------
    def create_collection(self, name: str, dimension: int, metric: str = COSINE) -> None:
        distance = _QDRANT_DISTANCES.get(metric)
        if distance is None:
            raise ValueError(f"Unsupported metric {metric!r}")
        body = {"vectors": {"size": int(dimension), "distance": distance}}
        r = self._request("PUT", f"/collections/{name}", json=body)
        if r.status_code == 409 or (r.status_code == 400 and "already exists" in r.text):
            logger.info("Collection already exists, continuing: %s", name)
            return
        if r.status_code >= 400:
            raise self._fail(r, "create collection")
        with self._lock:
            self._dims[name] = int(dimension)
        logger.info("Collection created: %s (dim=%d)", name, dimension)

    def delete_collection(self, name: str) -> None:
        with self._lock:
            self._dims.pop(name, None)
        r = self._request("DELETE", f"/collections/{name}")
        if r.status_code == 404:
            logger.info("Collection not found, nothing to delete: %s", name)
            return
        if r.status_code >= 400:
            raise self._fail(r, "delete collection")
        logger.info("Collection deleted: %s", name)

    def collection_info(self, name: str) -> Optional[CollectionInfo]:
        r = self._request("GET", f"/collections/{name}")
        if r.status_code == 404:
            with self._lock:
                self._dims.pop(name, None)
            return None
        if r.status_code >= 400:
            raise self._fail(r, "collection info")
        try:
            result = r.json()["result"]
            vectors = result["config"]["params"]["vectors"]
            dimension = int(vectors["size"])
            metric = str(vectors.get("distance", "Cosine")).lower()
        except (ValueError, KeyError, TypeError) as e:
            raise VectorStoreError(f"Malformed collection info for {name}: {e}") from e
        with self._lock:
            self._dims[name] = dimension
        return CollectionInfo(name, dimension, metric, result.get("points_count"))

    def _dimension(self, name: str) -> int:
        with self._lock:
            dim = self._dims.get(name)
        if dim is not None:
            return dim
        info = self.collection_info(name)
        if info is None:
            raise CollectionNotFoundError(name)
        return info.dimension

    # ----------------- points -----------------
    def upsert(self, name: str, records: Sequence[VectorRecord]) -> None:
        _check_dimensions(records, self._dimension(name))
        if not records:
            return
        points = [{"id": rec.id, "vector": list(rec.vector), "payload": rec.payload} for rec in records]
        r = self._request("PUT", f"/collections/{name}/points", params={"wait": "true"}, json={"points": points})
        if r.status_code == 404:
            with self._lock:
                self._dims.pop(name, None)
            raise CollectionNotFoundError(name)
        if r.status_code >= 400:
            raise self._fail(r, "upsert")

    def search(self, name: str, query_vector: Sequence[float], top_k: int) -> List[ScoredRecord]:
        dim = self._dimension(name)
        if len(query_vector) != dim:
            raise DimensionMismatchError(dim, len(query_vector))
        body = {"vector": list(query_vector), "limit": int(top_k), "with_payload": True}
        r = self._request("POST", f"/collections/{name}/points/search", json=body)
        if r.status_code == 404:
            with self._lock:
                self._dims.pop(name, None)
            raise CollectionNotFoundError(name)
        if r.status_code >= 400:
            raise self._fail(r, "search")
        try:
            hits = r.json()["result"] or []
            out = [
                ScoredRecord(
                    VectorRecord(h["id"], list(h.get("vector") or []), dict(h.get("payload") or {})),
                    float(h["score"]),
                )
                for h in hits
            ]
        except (ValueError, KeyError, TypeError) as e:
            raise VectorStoreError(f"Malformed search response: {e}") from e
        out.sort(key=lambda s: s.score, reverse=True)
        return out

    def ping(self) -> bool:
        try:
            return self._client.get("/collections").status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Qdrant ping failed: %s", e)
            return False

    def close(self) -> None:
        self._client.close()
