"""Tests for push ingestion of externally scraped events."""
from sqlalchemy import func, select

from cellar.models import RawEvent
from cellar.services.ingestion import PUSH_SOURCE_URL, build_raw_content, ingest_raw_events, source_name_for


class TestSourceNames:
    def test_known_hosts(self):
        assert source_name_for("https://www.visitloudoun.org/event/harvest") == "Visit Loudoun Events"
        assert source_name_for("https://www.fxva.com/events/123") == "FXVA Events"

    def test_unknown_host_falls_back_to_hostname(self):
        assert source_name_for("https://calendar.example.com/x") == "calendar.example.com"

    def test_missing_link(self):
        assert source_name_for(None) == "Unknown Source"
        assert source_name_for("") == "Unknown Source"


class TestIngest:
    async def test_stores_valid_items_only(self, session):
        events = [
            {"title": "Fall Wine Fest", "link": "https://www.virginia.org/e/1", "description": "Tastings", "pubDate": "Oct 1"},
            {"title": "", "description": "missing title"},
            {"title": "No description"},
            "not-an-object",
            {"title": "Cider Social", "description": "Hard cider night"},
        ]
        rows, received = await ingest_raw_events(session, events)

        assert received == 5
        assert len(rows) == 2
        assert rows[0].source_name == "Virginia Tourism Events"
        assert rows[0].is_processed is False
        assert rows[1].source_url == PUSH_SOURCE_URL
        assert "No link provided" in rows[1].raw_content
        assert rows[1].content_length == len(rows[1].raw_content)

    async def test_malformed_payload_stores_nothing(self, session):
        for payload in (None, "events", {"title": "x"}, []):
            rows, _ = await ingest_raw_events(session, payload)
            assert rows == []
        count = await session.scalar(select(func.count()).select_from(RawEvent))
        assert count == 0

    def test_raw_content_layout(self):
        content = build_raw_content({"title": "T", "description": "D", "link": "https://x", "pubDate": "P"})
        assert content.splitlines() == ["Title: T", "Description: D", "Link: https://x", "Published: P"]
