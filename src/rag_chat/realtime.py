"""WebSocket event channel for chat with typing and progress indicators."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict

from anyio import from_thread
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from .errors import NotFoundError, ValidationError
from .models import messages_to_dicts
from .orchestrator import ChatOrchestrator, Stage

logger = logging.getLogger(__name__)

EVENT_MESSAGE = "chat:message"
EVENT_TYPING = "chat:typing"
EVENT_PROGRESS = "chat:progress"
EVENT_ERROR = "error"

# What a send on a socket the client already closed raises, depending on the server.
_GONE = (WebSocketDisconnect, RuntimeError, OSError)


async def _emit(ws: WebSocket, event: str, data: Dict[str, Any]) -> None:
    await ws.send_json({"event": event, "data": data})


async def _emit_quietly(ws: WebSocket, event: str, data: Dict[str, Any]) -> bool:
    """Send unless the client is gone; returns False when it is."""
    try:
        await _emit(ws, event, data)
    except _GONE as e:
        logger.info("Client went away before %s could be sent: %r", event, e)
        return False
    return True


async def handle_chat_event(ws: WebSocket, orchestrator: ChatOrchestrator, data: Dict[str, Any]) -> None:
    """Run one chat turn for a socket client.

    Emits ``chat:typing`` true before work starts, one ``chat:progress`` per
    pipeline stage, and ``chat:typing`` false last on every exit path while
    the client is still connected.
    """
    session_id = data.get("sessionId")
    message = data.get("message")
    connected = True
    progress = {"live": True}

    def on_stage(stage: Stage) -> None:
        # Called from the worker thread; the send runs back on the event loop.
        if not progress["live"]:
            return
        try:
            from_thread.run(_emit, ws, EVENT_PROGRESS, {"stage": stage.value})
        except _GONE as e:
            logger.info("Stopping progress events for session %s: %r", session_id, e)
            progress["live"] = False

    try:
        if not session_id or not message:
            await _emit(ws, EVENT_ERROR, {"message": "sessionId and message are required"})
            return

        await _emit(ws, EVENT_TYPING, {"isTyping": True})
        outcome = await run_in_threadpool(orchestrator.handle, session_id, message, on_stage=on_stage)
        await _emit(ws, EVENT_MESSAGE, {"message": outcome.response, "history": messages_to_dicts(outcome.history)})
    except WebSocketDisconnect:
        connected = False
        raise
    except NotFoundError:
        await _emit_quietly(ws, EVENT_ERROR, {"message": "Session not found"})
    except ValidationError as e:
        await _emit_quietly(ws, EVENT_ERROR, {"message": e.message})
    except Exception:
        logger.exception("WebSocket error")
        await _emit_quietly(ws, EVENT_ERROR, {"message": "Failed to process message"})
    finally:
        if connected:
            await _emit_quietly(ws, EVENT_TYPING, {"isTyping": False})


def register_chat_socket(app: FastAPI, orchestrator: ChatOrchestrator, path: str = "/ws") -> None:
    @app.websocket(path)
    async def chat_socket(ws: WebSocket) -> None:
        await ws.accept()
        client = f"{ws.client.host}:{ws.client.port}" if ws.client else "unknown"
        logger.info("Client connected: %s", client)
        try:
            while True:
                raw = await ws.receive_text()
                try:
                    frame = json.loads(raw)
                except ValueError:
                    await _emit(ws, EVENT_ERROR, {"message": "Frames must be JSON"})
                    continue
                if not isinstance(frame, dict) or frame.get("event") != EVENT_MESSAGE:
                    await _emit(ws, EVENT_ERROR, {"message": "Unknown event"})
                    continue
                data = frame.get("data")
                await handle_chat_event(ws, orchestrator, data if isinstance(data, dict) else {})
        except WebSocketDisconnect:
            logger.info("Client disconnected: %s", client)
