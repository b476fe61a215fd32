"""Generative client for the Gemini ``generateContent`` HTTP API."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from .config import GenerationSettings
from .errors import GenerationError
from .results import Result

logger = logging.getLogger(__name__)

UNAVAILABLE_REPLY = "I'm having trouble connecting to the AI service. Please try again later."
EMPTY_REPLY = "I couldn't generate a response. Please try again."


class Generator(ABC):
    """Turns a prompt into text. Failures come back as results with a fallback."""

    @abstractmethod
    def complete(self, prompt: str) -> Result[str]:
        ...

    @property
    def configured(self) -> bool:
        return True


class GeminiClient(Generator):
    def __init__(
        self,
        settings: GenerationSettings,
        *,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings
        self._client = client or httpx.Client(timeout=httpx.Timeout(settings.timeout, connect=5.0))

    @property
    def configured(self) -> bool:
        return bool(self.settings.api_key)

    @property
    def endpoint(self) -> str:
        base = self.settings.base_url.rstrip("/")
        return f"{base}/models/{self.settings.model}:generateContent"

    def complete(self, prompt: str) -> Result[str]:
        body = {"contents": [{"parts": [{"text": prompt}]}]}
        try:
            r = self._client.post(
                self.endpoint,
                json=body,
                headers={
                    "Content-Type": "application/json",
                    # The key never goes in the URL.
                    "x-goog-api-key": self.settings.api_key or "",
                },
            )
            if r.status_code >= 400:
                raise GenerationError(_error_message(r))
            text = _first_candidate_text(r.json())
        except GenerationError as e:
            logger.error("Gemini API error: %s", e)
            return Result.failure(e, fallback=UNAVAILABLE_REPLY)
        except httpx.HTTPError as e:
            logger.error("Gemini API request failed: %s", e)
            return Result.failure(GenerationError(str(e)), fallback=UNAVAILABLE_REPLY)
        except ValueError as e:
            logger.error("Gemini API returned malformed JSON: %s", e)
            return Result.failure(GenerationError(str(e)), fallback=UNAVAILABLE_REPLY)

        if not text:
            logger.warning("Gemini API returned no candidates")
            return Result.failure(GenerationError("No candidates returned"), fallback=EMPTY_REPLY)
        return Result.success(text)

    def close(self) -> None:
        self._client.close()


def _error_message(r: httpx.Response) -> str:
    try:
        detail = r.json().get("error", {}).get("message")
    except (ValueError, AttributeError):
        detail = None
    return detail or f"Failed to call Gemini API (HTTP {r.status_code})"


def _first_candidate_text(data: Any) -> str:
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict)).strip()
