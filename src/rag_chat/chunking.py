"""Sentence-window chunking for article bodies."""
from __future__ import annotations

import re
from typing import List

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")

DEFAULT_WINDOW = 3


def split_sentences(text: str) -> List[str]:
    """Split on ``.``, ``!`` or ``?`` followed by whitespace; punctuation stays put."""
    text = (text or "").strip()
    if not text:
        return []
    return [s for s in _SENTENCE_BOUNDARY.split(text) if s]


def chunk_text(text: str, window_size: int = DEFAULT_WINDOW) -> List[str]:
    """
    Group consecutive sentences into windows of up to ``window_size``.

    Windows keep the original order, do not overlap, and are joined by a
    single space. A trailing partial window is still emitted. Blank input
    yields an empty list.
    """
    if window_size < 1:
        raise ValueError("window_size must be >= 1")

    sentences = split_sentences(text)
    chunks: List[str] = []
    for i in range(0, len(sentences), window_size):
        chunks.append(" ".join(sentences[i : i + window_size]))
    return chunks
