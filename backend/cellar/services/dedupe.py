"""
Content addressing for research briefs.

A brief is identified by SHA-1 of (normalized event name, event date,
business id), stored in research_briefs.dedup_key under a unique constraint.
"""
from __future__ import annotations

import hashlib
import re
import unicodedata
from datetime import date, datetime


def normalize_text(text: str | None) -> str:
    """Normalize text for deduplication.

    - NFKC unicode normalization
    - lowercase
    - collapse whitespace
    - strip punctuation (keep letters, digits, spaces)
    """
    if not text:
        return ""
    text = unicodedata.normalize("NFKC", text)
    text = text.lower()
    text = re.sub(r"[^\w\s]", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def _date_part(event_date: datetime | date | str | None) -> str:
    if event_date is None:
        return ""
    if isinstance(event_date, datetime):
        return event_date.date().isoformat()
    if isinstance(event_date, date):
        return event_date.isoformat()
    return normalize_text(event_date)


def brief_dedup_key(event_name: str | None, event_date: datetime | date | str | None, business_id: int) -> str:
    """Stable identifier for one (event, business) pair."""
    raw = "|".join([normalize_text(event_name), _date_part(event_date), str(business_id)])
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()
