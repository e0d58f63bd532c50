"""Pytest fixtures for cellar tests."""
from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cellar.db import Base, get_session
from cellar.dependencies import get_app_settings, get_http_transport, get_llm
from cellar.main import app
from cellar.models import BusinessProfile, ContentItem, ResearchBrief
from cellar.services.llm_provider import Completion, LLMProvider
from cellar.settings import Settings

SOURCE_URLS = [
    "https://events.example.org/calendar",
    "https://visit.example.com/events/",
    "https://news.example.net/whats-on",
]

EVENT_PAGE = """
<html><head><title>Events</title><script>var tracking = 'Festival 2099';</script></head>
<body>
  <nav>Home | Festival | Contact</nav>
  <h1>Upcoming events</h1>
  <p>The Leesburg Harvest Festival returns on Saturday, October 12 with tastings and live music.</p>
  <p>Parking is free.</p>
  <p>Join the Holiday Market in Purcellville this December for local gifts &amp; crafts.</p>
</body></html>
"""


# --- LLM fake ---

class ScriptedLLM(LLMProvider):
    """Returns queued responses in order; an Exception in the queue is raised instead."""

    name = "scripted"

    def __init__(self, *responses: str | Exception, tokens: int = 42):
        self.responses = list(responses)
        self.tokens = tokens
        self.calls: list[dict[str, Any]] = []

    async def complete(self, *, system, user, json_mode=False, max_tokens=1500, temperature=0.7) -> Completion:
        self.calls.append({
            "system": system,
            "user": user,
            "json_mode": json_mode,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if not self.responses:
            raise AssertionError("ScriptedLLM ran out of responses")
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return Completion(nxt, model="scripted", tokens_used=self.tokens)


# --- HTTP fakes ---

def page_transport(pages: dict[str, tuple[int, str]]) -> httpx.MockTransport:
    """Serve canned pages by URL; any other URL times out."""

    def handler(request: httpx.Request) -> httpx.Response:
        hit = pages.get(str(request.url))
        if hit is None:
            raise httpx.ConnectTimeout("timed out", request=request)
        status_code, body = hit
        return httpx.Response(status_code, text=body)

    return httpx.MockTransport(handler)


def timeout_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    return httpx.MockTransport(handler)


# --- Settings / database ---

def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database_url": "sqlite+aiosqlite://",
        "openai_api_key": None,
        "apify_token": None,
        "discovery_mode": "direct",
        "event_source_urls": list(SOURCE_URLS),
        "fetch_timeout_sec": 1.0,
        "relevance_threshold": 6,
        "location_filter_enabled": True,
        "demo_fallback_on_llm_error": False,
        "pipeline_iteration_delay_ms": 0,
        "push_batch_limit": 50,
        "scheduler_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Driver-level autocommit: SAVEPOINT works and sessions sharing the in-memory
    # connection never nest BEGIN.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# --- Model factories ---

@pytest.fixture
def make_profile(session) -> Callable:
    async def _make(**fields: Any) -> BusinessProfile:
        values = {
            "business_name": "Blue Ridge Cellars",
            "owner_name": "Sam Rivera",
            "location": "Leesburg, VA",
        }
        values.update(fields)
        profile = BusinessProfile(**values)
        session.add(profile)
        await session.commit()
        await session.refresh(profile)
        return profile

    return _make


@pytest.fixture
def make_brief(session) -> Callable:
    async def _make(profile: BusinessProfile, **fields: Any) -> ResearchBrief:
        values = {
            "business_id": profile.id,
            "suggested_theme": "Local Event Opportunity: Harvest Festival",
            "key_points": ["Event: Harvest Festival", "Summary: Tastings and live music."],
            "local_event_name": "Harvest Festival",
            "local_event_location": "Leesburg",
            "relevance_score": 9,
            "dedup_key": f"key-{profile.id}-{fields.get('local_event_name', 'harvest')}",
        }
        values.update(fields)
        brief = ResearchBrief(**values)
        session.add(brief)
        await session.commit()
        await session.refresh(brief)
        return brief

    return _make


@pytest.fixture
def make_item(session) -> Callable:
    async def _make(profile: BusinessProfile, **fields: Any) -> ContentItem:
        values = {
            "business_id": profile.id,
            "title": "Hello",
            "body": "<p>Hello</p>",
            "content_type": "blog_post",
            "status": "draft",
            "generation_method": "manual",
        }
        values.update(fields)
        item = ContentItem(**values)
        session.add(item)
        await session.commit()
        await session.refresh(item)
        return item

    return _make


# --- Client Fixtures ---

class Overrides:
    """Mutable per-test wiring for the app's dependencies."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.llm: LLMProvider | None = None
        self.transport: httpx.AsyncBaseTransport | None = timeout_transport()


@pytest.fixture
def overrides(settings) -> Overrides:
    return Overrides(settings)


@pytest.fixture
async def client(session_factory, overrides: Overrides):
    """Async client against the app with store, config, LLM and network swapped out."""

    async def _session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_app_settings] = lambda: overrides.settings
    app.dependency_overrides[get_llm] = lambda: overrides.llm
    app.dependency_overrides[get_http_transport] = lambda: overrides.transport
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
