"""Plain data types passed between the service handles."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

USER = "user"
ASSISTANT = "assistant"
ROLES = (USER, ASSISTANT)

PointId = Union[str, int]


@dataclass(frozen=True)
class Message:
    """A single conversation message stored in a session."""

    role: str       # "user" | "assistant"
    content: str

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=ASSISTANT, content=content)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Message":
        # Stored blobs are tolerated as-is: unknown roles are kept, not rejected.
        return cls(role=str(raw.get("role", "")), content=str(raw.get("content", "") or ""))

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


def messages_to_dicts(messages: List[Message]) -> List[Dict[str, str]]:
    return [m.to_dict() for m in messages]


@dataclass(frozen=True)
class VectorRecord:
    """A point in a collection: id, embedding and free-form payload."""

    id: PointId
    vector: List[float]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoredRecord:
    """A search hit; higher ``score`` means more similar."""

    record: VectorRecord
    score: float

    @property
    def text(self) -> str:
        return str(self.record.payload.get("text", "") or "")


@dataclass(frozen=True)
class CollectionInfo:
    name: str
    dimension: int
    metric: str = "cosine"
    points_count: Optional[int] = None


@dataclass(frozen=True)
class Article:
    """A news item pulled from a feed, reduced to plain text."""

    title: str
    link: str
    text: str
    published: Optional[str] = None
