"""Error taxonomy shared by every service handle and the HTTP layer."""
from __future__ import annotations


class RagChatError(Exception):
    """Base class. ``status_code`` is what the HTTP layer answers with."""

    status_code: int = 500
    public_message: str = "Internal Server Error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ConfigError(RagChatError):
    pass


class ValidationError(RagChatError):
    status_code = 400
    public_message = "Invalid request"


class NotFoundError(RagChatError):
    status_code = 404
    public_message = "Not found"


class SessionNotFoundError(NotFoundError):
    public_message = "Session not found"

    def __init__(self, session_id: str = "") -> None:
        super().__init__("Session not found")
        self.session_id = session_id


class CollectionNotFoundError(NotFoundError):
    public_message = "Collection not found"

    def __init__(self, name: str = "") -> None:
        super().__init__(f"Collection not found: {name}" if name else "")
        self.name = name


class DimensionMismatchError(RagChatError):
    public_message = "Vector dimension mismatch"

    def __init__(self, expected: int, actual: int, *, record_id: object = None) -> None:
        where = f" (record {record_id!r})" if record_id is not None else ""
        super().__init__(f"Expected vector of length {expected}, got {actual}{where}")
        self.expected = expected
        self.actual = actual
        self.record_id = record_id


# -----------------------------
# Upstream failures
# -----------------------------
class UpstreamError(RagChatError):
    status_code = 502
    public_message = "Upstream service failed"


class EmbeddingError(UpstreamError):
    public_message = "Embedding service failed"


class EmptyInputError(EmbeddingError):
    public_message = "Text cannot be empty"


class GenerationError(UpstreamError):
    public_message = "Generation service failed"


class VectorStoreError(UpstreamError):
    public_message = "Vector store failed"


class SessionStoreError(UpstreamError):
    public_message = "Session store failed"


class FeedError(UpstreamError):
    public_message = "News feed could not be fetched"
