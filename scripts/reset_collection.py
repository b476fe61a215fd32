#!/usr/bin/env python3
"""Drop and recreate a collection, e.g. after changing the embedding model's dimension."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from rag_chat.config import Settings, configure_logging  # noqa: E402
from rag_chat.errors import RagChatError  # noqa: E402
from rag_chat.vector_store import COSINE, QdrantVectorStore  # noqa: E402


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Reset a Qdrant collection.")
    p.add_argument("--config", default=None)
    p.add_argument("--collection", default=None, help="Collection name (default: chat.collection).")
    p.add_argument("--dimension", type=int, default=None, help="Vector size (default: embedding.dimension).")
    args = p.parse_args(argv)

    settings = Settings.load(args.config)
    configure_logging(settings.server.log_level)
    name = args.collection or settings.chat.collection
    dimension = args.dimension or settings.embedding.dimension

    store = QdrantVectorStore(settings.vector_store)
    try:
        store.delete_collection(name)
        store.create_collection(name, dimension, COSINE)
    except RagChatError as e:
        print(f"Reset failed: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"Collection {name} recreated with dimension {dimension}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
