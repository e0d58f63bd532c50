"""
Event discovery: one interface, three interchangeable adapters.

Each adapter implements `EventDiscoveryAdapter.discover()` and returns a
`DiscoveryReport` with exactly one `SourceResult` per configured source.
A failing source is recorded, never raised; the caller decides what an
all-failed report means.

Adapters are chosen by `settings.discovery_mode` through `get_discovery_adapter`.
"""
from __future__ import annotations

import abc
import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx
from bs4 import BeautifulSoup
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cellar.integrations.apify_client import scrape_pages
from cellar.models import RawEvent
from cellar.settings import ConfigurationError, Settings

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/123.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

_MONTHS = (
    "january|february|march|april|may|june|july|august|september|october|november|december"
    "|jan|feb|mar|apr|jun|jul|aug|sep|sept|oct|nov|dec"
)
_WEEKDAYS = "monday|tuesday|wednesday|thursday|friday|saturday|sunday"
EVENT_KEYWORD_RE = re.compile(
    rf"\b(festival|fest|tasting|concert|market|fair|celebration|tour|dinner|pairing|harvest"
    rf"|live music|workshop|parade|{_MONTHS}|{_WEEKDAYS})\b|\b(19|20)\d{{2}}\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")
_NOISE_TAGS = ("script", "style", "noscript", "nav", "footer", "header", "svg", "iframe", "form")

# Runs inside the Apify web-scraper actor for every start URL.
APIFY_PAGE_FUNCTION = """
async function pageFunction(context) {
    const { request, log, jQuery } = context;
    try {
        const html = document.documentElement ? document.documentElement.outerHTML : '';
        return { source_url: request.url, raw_content: html, scrape_timestamp: new Date().toISOString() };
    } catch (error) {
        log.error(`Error processing ${request.url}: ${error.message}`);
        return { source_url: request.url, raw_content: `Error processing page: ${error.message}` };
    }
}
"""


def clean_html(html: str) -> str:
    """Strip markup, scripts and page chrome; decode entities; collapse whitespace."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_NOISE_TAGS):
        tag.decompose()
    text = soup.get_text(separator="\n")
    lines = [re.sub(r"[ \t\xa0]+", " ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def extract_event_sentences(text: str, max_chars: int = 8000) -> str:
    """Keep only sentences that look like they mention an event."""
    kept: list[str] = []
    size = 0
    for sentence in _SENTENCE_SPLIT_RE.split(text or ""):
        sentence = sentence.strip()
        if len(sentence) < 12 or not EVENT_KEYWORD_RE.search(sentence):
            continue
        if size + len(sentence) > max_chars:
            break
        kept.append(sentence)
        size += len(sentence) + 1
    return "\n".join(kept)


@dataclass
class SourceResult:
    """Outcome of fetching one configured source."""
    source: str
    success: bool
    text: str = ""
    source_name: str | None = None
    error: str | None = None
    status_code: int | None = None
    raw_event_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "source_name": self.source_name,
            "success": self.success,
            "chars": len(self.text),
            "status_code": self.status_code,
            "error": self.error,
        }


@dataclass
class DiscoveryReport:
    """Per-source results of one discovery pass."""
    mode: str
    results: list[SourceResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> list[SourceResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[SourceResult]:
        return [r for r in self.results if not r.success]

    @property
    def all_failed(self) -> bool:
        return self.total > 0 and not self.successful

    @property
    def raw_event_ids(self) -> list[int]:
        return [rid for r in self.successful for rid in r.raw_event_ids]

    def combined_text(self) -> str:
        return "\n\n---\n\n".join(
            f"=== Content from {r.source_name or r.source} ===\n{r.text}"
            for r in self.successful
            if r.text
        )


class EventDiscoveryAdapter(abc.ABC):
    """Base class for event sources."""

    mode: str = "unknown"

    @abc.abstractmethod
    async def discover(self, date_range: tuple[date, date] | None = None) -> DiscoveryReport:
        """Fetch candidate event text from every configured source."""
        ...


# ── Direct fetch ──────────────────────────────────────────────

class DirectFetchAdapter(EventDiscoveryAdapter):
    """Concurrent GETs against public event listing pages."""

    mode = "direct"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self.urls = list(settings.event_source_urls)
        self.timeout = settings.fetch_timeout_sec
        self.max_chars = settings.max_source_chars
        self._transport = transport

    async def discover(self, date_range: tuple[date, date] | None = None) -> DiscoveryReport:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers=BROWSER_HEADERS,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(*(self._fetch(client, url) for url in self.urls))
        report = DiscoveryReport(mode=self.mode, results=list(results))
        logger.info(
            "Direct fetch: %s/%s sources reachable", len(report.successful), report.total
        )
        return report

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> SourceResult:
        try:
            resp = await client.get(url)
        except httpx.TimeoutException:
            logger.warning("Timed out fetching %s after %ss", url, self.timeout)
            return SourceResult(source=url, success=False, error=f"timeout after {self.timeout}s")
        except httpx.HTTPError as exc:
            logger.warning("Error fetching %s: %s", url, exc)
            return SourceResult(source=url, success=False, error=str(exc) or exc.__class__.__name__)

        if not resp.is_success:
            logger.warning("Failed to fetch %s: HTTP %s", url, resp.status_code)
            return SourceResult(source=url, success=False, status_code=resp.status_code, error=f"HTTP {resp.status_code}")

        text = extract_event_sentences(clean_html(resp.text), self.max_chars)
        logger.debug("Fetched %s (%s chars kept)", url, len(text))
        return SourceResult(source=url, success=True, text=text, status_code=resp.status_code)


# ── Third-party scrape service ────────────────────────────────

class ScrapeServiceAdapter(EventDiscoveryAdapter):
    """Delegates fetching to an Apify web-scraper actor (JS rendering, proxy rotation)."""

    mode = "scrape_service"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self.urls = list(settings.event_source_urls)
        self.token = settings.apify_token
        self.actor = settings.apify_actor
        self.timeout = settings.apify_timeout_sec
        self.max_chars = settings.max_source_chars
        self._transport = transport

    def _all_failed(self, reason: str) -> DiscoveryReport:
        return DiscoveryReport(
            mode=self.mode,
            results=[SourceResult(source=url, success=False, error=reason) for url in self.urls],
        )

    async def discover(self, date_range: tuple[date, date] | None = None) -> DiscoveryReport:
        if not self.token:
            logger.warning("APIFY_TOKEN not configured: scrape service unavailable")
            return self._all_failed("APIFY_TOKEN not configured")

        try:
            by_url = await scrape_pages(
                self.token,
                self.actor,
                self.urls,
                APIFY_PAGE_FUNCTION,
                timeout_s=self.timeout,
                transport=self._transport,
            )
        except HTTPException as exc:
            logger.warning("Scrape service run failed: %s", exc.detail)
            return self._all_failed(f"scrape service failed: {exc.detail}")

        results: list[SourceResult] = []
        for url in self.urls:
            item = by_url.get(url.rstrip("/"))
            raw = (item or {}).get("raw_content") or ""
            if not item:
                results.append(SourceResult(source=url, success=False, error="no item returned"))
            elif not raw or raw.startswith("Error"):
                results.append(SourceResult(source=url, success=False, error=raw[:200] or "empty content"))
            else:
                text = extract_event_sentences(clean_html(raw), self.max_chars)
                results.append(SourceResult(source=url, success=True, text=text))

        report = DiscoveryReport(mode=self.mode, results=results)
        logger.info("Scrape service: %s/%s sources returned content", len(report.successful), report.total)
        return report


# ── Push ingestion ────────────────────────────────────────────

class PushIngestionAdapter(EventDiscoveryAdapter):
    """Reads the shared pool of unprocessed RawEvent rows."""

    mode = "push"

    def __init__(self, settings: Settings, session: AsyncSession):
        self.session = session
        self.limit = settings.push_batch_limit
        self.max_chars = settings.max_source_chars

    async def discover(self, date_range: tuple[date, date] | None = None) -> DiscoveryReport:
        res = await self.session.execute(
            select(RawEvent)
            .where(RawEvent.is_processed.is_(False))
            .order_by(RawEvent.created_at.asc(), RawEvent.id.asc())
            .limit(self.limit)
        )
        rows = res.scalars().all()
        results = [
            SourceResult(
                source=row.source_url,
                source_name=row.source_name,
                success=True,
                text=row.raw_content[: self.max_chars],
                raw_event_ids=[row.id],
            )
            for row in rows
        ]
        logger.info("Push ingestion: %s unprocessed raw events", len(results))
        return DiscoveryReport(mode=self.mode, results=results)


# ── Registry ──────────────────────────────────────────────────

DISCOVERY_MODES = ("direct", "scrape_service", "push")


def get_discovery_adapter(
    settings: Settings,
    *,
    session: AsyncSession | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> EventDiscoveryAdapter:
    """Build the adapter selected by settings.discovery_mode."""
    mode = (settings.discovery_mode or "").lower()
    if mode == "direct":
        return DirectFetchAdapter(settings, transport=transport)
    if mode == "scrape_service":
        return ScrapeServiceAdapter(settings, transport=transport)
    if mode == "push":
        if session is None:
            raise ValueError("push discovery needs a database session")
        return PushIngestionAdapter(settings, session)
    raise ConfigurationError(
        f"DISCOVERY_MODE={settings.discovery_mode!r} is not one of {', '.join(DISCOVERY_MODES)}"
    )
