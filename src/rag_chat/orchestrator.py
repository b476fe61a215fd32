"""The per-message RAG flow: history → retrieval → prompt → generation → persist."""
from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .config import DEFAULT_SYSTEM_PROMPT
from .embeddings import Embedder
from .errors import DimensionMismatchError, NotFoundError, UpstreamError, ValidationError
from .generation import Generator
from .models import Message, VectorRecord, messages_to_dicts
from .sessions import SessionStore
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

NO_CONTEXT = "No relevant text found."


class Stage(str, enum.Enum):
    RECEIVED = "received"
    HISTORY_LOADED = "history_loaded"
    CONTEXT_RETRIEVED = "context_retrieved"
    RESPONSE_GENERATED = "response_generated"
    PERSISTED = "persisted"
    DELIVERED = "delivered"


@dataclass
class ChatOutcome:
    response: str
    session_id: str
    history: List[Message]
    degraded: bool = False
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "sessionId": self.session_id,
            "history": messages_to_dicts(self.history),
        }


@dataclass
class AskOutcome:
    answer: str
    context: str
    degraded: bool = False


@dataclass
class Retrieval:
    context: str = ""
    degraded: bool = False
    hits: int = 0
    errors: List[str] = field(default_factory=list)


def text_point_id(collection: str, text: str) -> str:
    # Same text, same point: a repeated question is stored once.
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{collection}:text:{text}"))


def render_history(history: List[Message]) -> str:
    return "\n".join(f"{m.role}: {m.content}" for m in history)


def build_prompt(system_prompt: str, context: str, history: List[Message], message: str) -> str:
    """Compose the single prompt string sent to the generative model."""
    return (
        f"{system_prompt.strip()}\n\n"
        f"Context:\n{context}\n\n"
        f"Chat History:\n{render_history(history)}\n\n"
        f"User: {message}\n"
        f"Assistant:"
    )


class ChatOrchestrator:
    """
    Runs one chat turn end to end.

    Usage:
        orch = ChatOrchestrator(sessions, embedder, store, generator)
        outcome = orch.handle(session_id, "What's new?")

    Only validation and session lookup failures raise. Retrieval and
    generation problems degrade the reply instead (``outcome.degraded``).
    History is written once, after generation, with both messages.
    """

    def __init__(
        self,
        sessions: SessionStore,
        embedder: Embedder,
        vector_store: VectorStore,
        generator: Generator,
        *,
        collection: str = "news_articles",
        text_collection: str = "text_collection",
        top_k: int = 3,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self.sessions = sessions
        self.embedder = embedder
        self.vector_store = vector_store
        self.generator = generator
        self.collection = collection
        self.text_collection = text_collection
        self.top_k = top_k
        self.system_prompt = system_prompt

    # -------------------------
    # Retrieval
    # -------------------------
    def retrieve(self, query: str, top_k: Optional[int] = None) -> Retrieval:
        """Embed ``query`` and join the payload text of the nearest chunks."""
        embedded = self.embedder.embed(query)
        if not embedded.ok:
            logger.warning("Embedding failed; answering without context: %s", embedded.error)
            return Retrieval(degraded=True, errors=[str(embedded.error)])
        return self._search(self.collection, embedded.value, top_k or self.top_k)

    def _search(self, collection: str, vector: List[float], top_k: int) -> Retrieval:
        try:
            hits = self.vector_store.search(collection, vector, top_k)
        except (NotFoundError, UpstreamError, DimensionMismatchError) as e:
            logger.error("Context search in %s failed; answering without context: %s", collection, e)
            return Retrieval(degraded=True, errors=[str(e)])

        texts = [h.text for h in hits if h.text]
        return Retrieval(context="\n\n".join(texts), hits=len(hits))

    # -------------------------
    # Free-text memory
    # -------------------------
    def store_text(self, text: Optional[str], *, vector: Optional[List[float]] = None) -> Optional[str]:
        """Embed ``text`` and keep it in the text collection, creating the collection if needed.

        Returns the point id, or None when the text could not be embedded.
        Vector store failures raise.
        """
        if not text or not text.strip():
            raise ValidationError("Text required")
        if vector is None:
            embedded = self.embedder.embed(text)
            if not embedded.ok:
                logger.warning("Not storing text; embedding failed: %s", embedded.error)
                return None
            vector = embedded.value

        self.vector_store.ensure_collection(self.text_collection, len(vector))
        point_id = text_point_id(self.text_collection, text)
        self.vector_store.upsert(self.text_collection, [VectorRecord(point_id, list(vector), {"text": text})])
        return point_id

    # -------------------------
    # Chat turn
    # -------------------------
    def handle(
        self,
        session_id: Optional[str],
        message: Optional[str],
        *,
        on_stage: Optional[Callable[[Stage], None]] = None,
    ) -> ChatOutcome:
        def advance(stage: Stage) -> None:
            logger.debug("session=%s stage=%s", session_id, stage.value)
            if on_stage is not None:
                on_stage(stage)

        if not session_id or not str(session_id).strip() or not message or not str(message).strip():
            raise ValidationError("sessionId and message are required")
        advance(Stage.RECEIVED)

        history = self.sessions.get_history(session_id)
        advance(Stage.HISTORY_LOADED)

        retrieval = self.retrieve(message)
        advance(Stage.CONTEXT_RETRIEVED)

        prompt = build_prompt(self.system_prompt, retrieval.context, history, message)
        completion = self.generator.complete(prompt)
        reply = completion.value_or("")
        if not completion.ok:
            logger.warning("Generation degraded for session %s: %s", session_id, completion.error)
        advance(Stage.RESPONSE_GENERATED)

        updated = self.sessions.append_messages(session_id, [Message.user(message), Message.assistant(reply)])
        advance(Stage.PERSISTED)

        outcome = ChatOutcome(
            response=reply,
            session_id=session_id,
            history=updated,
            degraded=retrieval.degraded or not completion.ok,
            context=retrieval.context,
        )
        advance(Stage.DELIVERED)
        return outcome

    # -------------------------
    # Stateless question
    # -------------------------
    def ask(self, question: Optional[str]) -> AskOutcome:
        """
        Answer a single question without a session.

        The closest text stored earlier is the context; the question is then
        stored itself. Searching first keeps the question from matching itself.
        """
        if not question or not question.strip():
            raise ValidationError("Question required")

        embedded = self.embedder.embed(question)
        if embedded.ok:
            retrieval = self._search(self.text_collection, embedded.value, 1)
            try:
                self.store_text(question, vector=embedded.value)
            except (NotFoundError, UpstreamError, DimensionMismatchError) as e:
                logger.error("Could not store question in %s: %s", self.text_collection, e)
                retrieval.degraded = True
                retrieval.errors.append(str(e))
        else:
            logger.warning("Embedding failed; answering without context: %s", embedded.error)
            retrieval = Retrieval(degraded=True, errors=[str(embedded.error)])

        context = retrieval.context or NO_CONTEXT
        completion = self.generator.complete(f"Q: {question}\nRelevant: {context}")
        return AskOutcome(
            answer=completion.value_or(""),
            context=retrieval.context,
            degraded=retrieval.degraded or not completion.ok,
        )
