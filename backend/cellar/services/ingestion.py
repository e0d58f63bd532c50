"""
Push ingestion: stores event tuples sent by an external automation
(title/link/description/pubDate) as unprocessed RawEvent rows.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession

from cellar.models import RawEvent

logger = logging.getLogger(__name__)

PUSH_SOURCE_URL = "https://push-ingestion-source"

KNOWN_SOURCES = {
    "visitloudoun": "Visit Loudoun Events",
    "fxva.com": "FXVA Events",
    "virginia.org": "Virginia Tourism Events",
    "visitpwc": "Prince William County Events",
    "visitfauquier": "Visit Fauquier Events",
    "northernvirginiamag": "Northern Virginia Magazine Events",
    "discoverclarkecounty": "Discover Clarke County Events",
}


def source_name_for(link: str | None) -> str:
    if not link:
        return "Unknown Source"
    for needle, name in KNOWN_SOURCES.items():
        if needle in link:
            return name
    host = urlparse(link).hostname
    return host or "Unknown Source"


def build_raw_content(item: dict[str, Any]) -> str:
    return (
        f"Title: {item['title']}\n"
        f"Description: {item['description']}\n"
        f"Link: {item.get('link') or 'No link provided'}\n"
        f"Published: {item.get('pubDate') or 'No date provided'}"
    )


def _valid_items(events: Any) -> list[dict[str, Any]]:
    if not isinstance(events, list):
        return []
    kept = []
    for item in events:
        if not isinstance(item, dict):
            continue
        title = item.get("title")
        description = item.get("description")
        if not isinstance(title, str) or not title.strip() or not isinstance(description, str) or not description.strip():
            logger.warning("Skipping pushed event with missing title or description")
            continue
        kept.append(item)
    return kept


async def ingest_raw_events(session: AsyncSession, events: Any) -> tuple[list[RawEvent], int]:
    """Persist valid pushed events. Returns (stored rows, received count).

    Malformed payloads are not rejected: they simply store nothing.
    """
    received = len(events) if isinstance(events, list) else 0
    items = _valid_items(events)
    if not items:
        logger.info("Push ingestion: nothing to store (received=%s)", received)
        return [], received

    now = datetime.now(timezone.utc)
    rows = []
    for item in items:
        raw_content = build_raw_content(item)
        link = item.get("link") if isinstance(item.get("link"), str) else None
        rows.append(
            RawEvent(
                source_url=link or PUSH_SOURCE_URL,
                source_name=source_name_for(link),
                raw_content=raw_content,
                content_length=len(raw_content),
                is_processed=False,
                scrape_timestamp=now,
            )
        )
    session.add_all(rows)
    await session.commit()
    for row in rows:
        await session.refresh(row)
    logger.info("Push ingestion: stored %s of %s events", len(rows), received)
    return rows, received
