"""FastAPI application exposing the RAG chat pipeline over HTTP."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import Settings, configure_logging, load_config
from .embeddings import Embedder
from .errors import NotFoundError, RagChatError, ValidationError
from .generation import Generator
from .ingest import ArticleSource
from .models import messages_to_dicts
from .orchestrator import ChatOrchestrator
from .realtime import register_chat_socket
from .services import Services, build_services
from .sessions import SessionStore
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request models
# -----------------------------
class ChatRequest(BaseModel):
    sessionId: Optional[str] = Field(default=None, description="Id returned by POST /session.")
    message: Optional[str] = Field(default=None)


class AskRequest(BaseModel):
    question: Optional[str] = Field(default=None)


# -----------------------------
# Utilities
# -----------------------------
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _internal_error(message: str, exc: Exception, development: bool) -> JSONResponse:
    # Detail only leaks to clients in development mode.
    return _error(500, f"{message}: {exc}" if development else message)


def _install_error_handlers(app: FastAPI, development: bool) -> None:
    @app.exception_handler(RagChatError)
    async def _rag_chat_error(request: Request, exc: RagChatError) -> JSONResponse:
        if exc.status_code < 500:
            return _error(exc.status_code, exc.message)
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _error(exc.status_code, exc.message if development else exc.public_message)

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Rejected malformed request to %s: %s", request.url.path, exc.errors())
        return _error(400, "Invalid request body")


def _chat_router(services: Services, orchestrator: ChatOrchestrator, development: bool) -> APIRouter:
    router = APIRouter()
    sessions = services.sessions

    @router.post("/session")
    def create_session() -> Dict[str, str]:
        return {"sessionId": sessions.create_session()}

    @router.get("/session/{session_id}")
    def get_session(session_id: str):
        try:
            history = sessions.get_history(session_id)
        except NotFoundError:
            return _error(404, "Session not found")
        except Exception as e:
            logger.exception("Error fetching chat history")
            return _internal_error("Failed to fetch chat history", e, development)
        return messages_to_dicts(history)

    @router.post("/session/{session_id}/reset")
    def reset_session(session_id: str):
        try:
            sessions.reset_history(session_id)
        except Exception as e:
            logger.exception("Error resetting session")
            return _internal_error("Failed to reset session", e, development)
        return {"success": True}

    def _chat(req: ChatRequest):
        try:
            outcome = orchestrator.handle(req.sessionId, req.message)
        except (ValidationError, NotFoundError):
            raise
        except Exception as e:
            logger.exception("Error processing chat message")
            return _internal_error("Failed to process message", e, development)
        if outcome.degraded:
            logger.info("Delivered degraded reply for session %s", outcome.session_id)
        return outcome.to_dict()

    router.add_api_route("/chat", _chat, methods=["POST"], name="chat")
    router.add_api_route("/message", _chat, methods=["POST"], name="chat_message", include_in_schema=False)
    return router


def _news_router(services: Services, development: bool) -> APIRouter:
    router = APIRouter()
    ingest_cfg = services.settings.ingest
    collection = services.settings.chat.collection

    @router.get("/ingest-news")
    def ingest_news(
        feed_url: Optional[str] = Query(default=None),
        max_articles: Optional[int] = Query(default=None, ge=1, le=500),
    ):
        try:
            report = services.ingestion().ingest(
                feed_url or ingest_cfg.feed_url,
                collection,
                max_articles or ingest_cfg.max_articles,
            )
        except Exception as e:
            logger.exception("News ingestion failed")
            return _internal_error("News ingestion failed", e, development)
        return {"message": "News ingestion complete", "count": report.count}

    return router


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
    sessions: Optional[SessionStore] = None,
    embedder: Optional[Embedder] = None,
    vector_store: Optional[VectorStore] = None,
    generator: Optional[Generator] = None,
    feed_reader: Optional[ArticleSource] = None,
) -> FastAPI:
    """Build the application. Any handle passed in replaces the configured one."""
    if services is not None:
        settings = services.settings
    elif settings is None:
        settings = Settings.from_config(load_config(config_path))

    configure_logging(settings.server.log_level)

    if services is None:
        services = build_services(
            settings,
            sessions=sessions,
            embedder=embedder,
            vector_store=vector_store,
            generator=generator,
            feed_reader=feed_reader,
        )
    orchestrator = services.orchestrator()
    development = bool(settings.server.development)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        services.close()

    app = FastAPI(title="RAG News Chat", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.state.orchestrator = orchestrator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    _install_error_handlers(app, development)

    chat_router = _chat_router(services, orchestrator, development)
    for prefix in settings.server.api_prefixes or [""]:
        app.include_router(chat_router, prefix=prefix.rstrip("/"), include_in_schema=(prefix == "/api/chat"))

    news_router = _news_router(services, development)
    app.include_router(news_router)
    app.include_router(news_router, prefix="/api/news", include_in_schema=False)

    @app.post("/ask")
    def ask(req: AskRequest):
        try:
            outcome = orchestrator.ask(req.question)
        except ValidationError:
            raise
        except Exception as e:
            logger.exception("Pipeline error")
            return _internal_error("Internal server error", e, development)
        return {"answer": outcome.answer}

    @app.get("/health")
    def health() -> Dict[str, Any]:
        stores = {
            "session_store": "connected" if services.sessions.ping() else "unavailable",
            "vector_store": "connected" if services.vector_store.ping() else "unavailable",
        }
        clients = {
            "embedding": "configured" if services.embedder.configured else "not configured",
            "generation": "configured" if services.generator.configured else "not configured",
        }
        ok = all(v == "connected" for v in stores.values())
        return {
            "status": "ok" if ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {**stores, **clients},
        }

    register_chat_socket(app, orchestrator)
    return app
