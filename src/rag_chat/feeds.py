"""RSS / Atom feed reader that reduces items to plain-text articles."""
from __future__ import annotations

import html
import logging
import re
import xml.etree.ElementTree as ET
from typing import List, Optional

import httpx
from trafilatura import html2txt
from trafilatura.utils import trim

from .errors import FeedError
from .models import Article

logger = logging.getLogger(__name__)

UA = "rag-chat-ingest/0.1 (+https://local)"
_ATOM = "{http://www.w3.org/2005/Atom}"
_CONTENT = "{http://purl.org/rss/1.0/modules/content/}encoded"
# "<" directly followed by a letter, "/" or "!" opens markup; "3 < 5" is prose.
_MARKUP = re.compile(r"<(?:[A-Za-z]|/[A-Za-z]|!)")


def html_to_text(s: Optional[str]) -> str:
    """Reduce a feed field to plain text.

    Markup goes through trafilatura, which drops script and style bodies and
    decodes entities. Text without tags only has entities decoded and
    whitespace collapsed.
    """
    if not s:
        return ""
    if not _MARKUP.search(s):
        return trim(html.unescape(s))
    # trafilatura rejects bare fragments, so give it a document to parse.
    return trim(html2txt(f"<html><body>{s}</body></html>", clean=True) or "")


def _text(el: Optional[ET.Element]) -> str:
    return (el.text or "").strip() if el is not None else ""


def parse_feed(content: bytes, limit: Optional[int] = None) -> List[Article]:
    """Parse RSS 2.0 or Atom bytes into articles, in feed order."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise FeedError(f"Feed is not valid XML: {e}") from e

    articles: List[Article] = []
    items = root.findall("./channel/item") or root.findall(".//item")
    if items:
        for item in items:
            body = _text(item.find("description")) or _text(item.find(_CONTENT))
            articles.append(
                Article(
                    title=html_to_text(_text(item.find("title"))),
                    link=_text(item.find("link")),
                    text=html_to_text(body),
                    published=_text(item.find("pubDate")) or None,
                )
            )
    else:
        for entry in root.findall(f"{_ATOM}entry"):
            link_el = entry.find(f"{_ATOM}link")
            body = _text(entry.find(f"{_ATOM}summary")) or _text(entry.find(f"{_ATOM}content"))
            articles.append(
                Article(
                    title=html_to_text(_text(entry.find(f"{_ATOM}title"))),
                    link=(link_el.get("href", "") if link_el is not None else ""),
                    text=html_to_text(body),
                    published=_text(entry.find(f"{_ATOM}updated")) or None,
                )
            )

    if limit is not None:
        articles = articles[: max(0, int(limit))]
    return articles


class FeedReader:
    """Fetches a feed over HTTP. Network or parse failures raise FeedError."""

    def __init__(self, *, timeout: float = 15.0, client: Optional[httpx.Client] = None) -> None:
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout, connect=5.0),
            headers={"User-Agent": UA, "Accept": "application/rss+xml, application/atom+xml, */*"},
            follow_redirects=True,
        )

    def fetch(self, url: str, limit: Optional[int] = None) -> List[Article]:
        try:
            r = self._client.get(url)
            r.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Feed fetch failed for %s: %s", url, e)
            raise FeedError(f"Could not fetch feed {url}: {e}") from e
        articles = parse_feed(r.content, limit=limit)
        logger.info("Fetched %d article(s) from %s", len(articles), url)
        return articles

    def close(self) -> None:
        self._client.close()
