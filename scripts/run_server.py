"""Script to launch the RAG news chat server."""

from __future__ import annotations

import argparse
import os
import sys

import uvicorn

# Ensure src/ is on sys.path (so imports work when run from a checkout)
SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from rag_chat.config import Settings  # noqa: E402


def main() -> None:
    settings = Settings.load(os.environ.get("RAG_CHAT_CONFIG"))
    # Fail before binding the port rather than on the first request.
    settings.validate()

    parser = argparse.ArgumentParser(description="Run the RAG news chat server.")
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST", settings.server.host),
        help="Host to bind the server to (default: from config, 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.server.port,
        help="Port to bind the server to (default: $PORT or 3000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development (default: off)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=int(os.environ.get("WORKERS", "1")),
        help="Number of worker processes (default: 1)",
    )
    args = parser.parse_args()

    uvicorn.run(
        "rag_chat.server:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers,
        log_level=settings.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
