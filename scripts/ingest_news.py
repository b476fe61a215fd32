#!/usr/bin/env python3
"""
One-shot news ingestion: fetch a feed, chunk, embed, and upsert into the
configured vector store.

Usage
-----
python scripts/ingest_news.py
python scripts/ingest_news.py --feed https://example.com/rss --max-articles 20
python scripts/ingest_news.py --collection news_articles --json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

# Ensure src/ is on path for direct execution
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from rag_chat.config import Settings, configure_logging  # noqa: E402
from rag_chat.errors import RagChatError  # noqa: E402
from rag_chat.services import build_services  # noqa: E402

logger = logging.getLogger("rag_chat.ingest_cli")


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Ingest a news feed into the vector store.")
    p.add_argument("--config", default=None, help="Path to a YAML config file.")
    p.add_argument("--feed", default=None, help="Feed URL (default: ingest.feed_url).")
    p.add_argument("--collection", default=None, help="Collection name (default: chat.collection).")
    p.add_argument("--max-articles", type=int, default=None, help="Articles to read (default: ingest.max_articles).")
    p.add_argument("--json", action="store_true", help="Print the report as JSON.")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = Settings.load(args.config)
    configure_logging(settings.server.log_level)

    try:
        services = build_services(settings)
    except RagChatError as e:
        logger.error("%s", e)
        return 2

    try:
        report = services.ingestion().ingest(
            args.feed or settings.ingest.feed_url,
            args.collection or settings.chat.collection,
            args.max_articles or settings.ingest.max_articles,
        )
    except RagChatError as e:
        logger.error("News ingestion failed: %s", e)
        return 1
    finally:
        services.close()

    if args.json:
        print(json.dumps(asdict(report), indent=2))
    else:
        print(f"Ingested {report.count} chunk(s) from {report.articles} article(s); {report.skipped} skipped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
