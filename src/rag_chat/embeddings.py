"""Embedding client for a Jina-compatible ``/v1/embeddings`` HTTP API."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import httpx

from .config import EmbeddingSettings
from .errors import EmbeddingError, EmptyInputError
from .results import Result

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Turns text into a fixed-length vector. Never raises; returns a Result."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        ...

    @abstractmethod
    def embed(self, text: str) -> Result[List[float]]:
        ...

    def embed_many(self, texts: List[str]) -> List[Result[List[float]]]:
        """One call per text so a single bad input cannot sink the batch."""
        return [self.embed(t) for t in texts]

    @property
    def configured(self) -> bool:
        return True


class JinaEmbeddingClient(Embedder):
    """
    Thin wrapper around the Jina embeddings endpoint.

    Usage:
        embedder = JinaEmbeddingClient(settings.embedding)
        result = embedder.embed("Markets rallied today.")
        if result.ok:
            vector = result.value
    """

    def __init__(
        self,
        settings: EmbeddingSettings,
        *,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings
        self._client = client or httpx.Client(timeout=httpx.Timeout(settings.timeout, connect=5.0))

    @property
    def dimension(self) -> int:
        return int(self.settings.dimension)

    @property
    def configured(self) -> bool:
        return bool(self.settings.api_key)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def embed(self, text: str) -> Result[List[float]]:
        if not text or not text.strip():
            return Result.failure(EmptyInputError("Text cannot be empty"))

        body = {"model": self.settings.model, "input": [text]}
        try:
            r = self._client.post(self.settings.url, json=body, headers=self._headers())
            r.raise_for_status()
            vector = self._parse(r.json())
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Embedding request rejected (%s): %s",
                e.response.status_code,
                e.response.text[:300],
            )
            return Result.failure(EmbeddingError(f"Embedding service returned {e.response.status_code}"))
        except httpx.HTTPError as e:
            logger.warning("Embedding request failed: %s", e)
            return Result.failure(EmbeddingError(f"Embedding request failed: {e}"))
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("Malformed embedding response: %s", e)
            return Result.failure(EmbeddingError(f"Malformed embedding response: {e}"))

        return Result.success(vector)

    def _parse(self, data: Any) -> List[float]:
        vector = data["data"][0]["embedding"]
        if not isinstance(vector, list) or not vector:
            raise ValueError("embedding is not a non-empty list")
        out = [float(x) for x in vector]
        if len(out) != self.dimension:
            raise ValueError(f"expected {self.dimension} dimensions, got {len(out)}")
        return out

    def close(self) -> None:
        self._client.close()
