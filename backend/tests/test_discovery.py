"""
Tests for event discovery adapters.

Every adapter must report exactly one result per configured source.
"""
import httpx
import pytest

from conftest import EVENT_PAGE, SOURCE_URLS, make_settings, page_transport, timeout_transport
from cellar.integrations.apify_client import actor_path_id, web_scraper_input
from cellar.models import RawEvent
from cellar.services.discovery import (
    DirectFetchAdapter,
    PushIngestionAdapter,
    ScrapeServiceAdapter,
    clean_html,
    extract_event_sentences,
    get_discovery_adapter,
)
from cellar.settings import ConfigurationError


class TestTextExtraction:
    """Tests for HTML cleanup and the keyword pre-filter."""

    def test_clean_html_drops_scripts_and_nav(self):
        text = clean_html(EVENT_PAGE)
        assert "tracking" not in text
        assert "Home | Festival" not in text
        assert "crafts" in text
        assert "&amp;" not in text

    def test_keeps_only_event_sentences(self):
        text = extract_event_sentences(clean_html(EVENT_PAGE))
        assert "Harvest Festival returns" in text
        assert "Holiday Market" in text
        assert "Parking is free" not in text

    def test_respects_char_limit(self):
        text = "\n".join(f"Wine tasting number {i} on Saturday." for i in range(100))
        assert len(extract_event_sentences(text, max_chars=200)) <= 200

    def test_empty_input(self):
        assert clean_html("") == ""
        assert extract_event_sentences("") == ""


class TestDirectFetch:
    """Tests for the direct HTTP adapter."""

    async def test_success_plus_failure_equals_total(self):
        transport = page_transport({
            SOURCE_URLS[0]: (200, EVENT_PAGE),
            SOURCE_URLS[1]: (503, "down"),
        })
        adapter = DirectFetchAdapter(make_settings(), transport=transport)
        report = await adapter.discover()

        assert report.total == len(SOURCE_URLS)
        assert len(report.successful) + len(report.failed) == report.total
        assert len(report.successful) == 1
        statuses = {r.source: r for r in report.results}
        assert statuses[SOURCE_URLS[1]].status_code == 503
        assert "timeout" in statuses[SOURCE_URLS[2]].error
        assert not report.all_failed

    async def test_all_timeouts_is_all_failed(self):
        adapter = DirectFetchAdapter(make_settings(), transport=timeout_transport())
        report = await adapter.discover()
        assert report.total == 3
        assert report.successful == []
        assert report.all_failed
        assert report.combined_text() == ""

    async def test_combined_text_labels_sources(self):
        adapter = DirectFetchAdapter(make_settings(), transport=page_transport({SOURCE_URLS[0]: (200, EVENT_PAGE)}))
        report = await adapter.discover()
        assert f"=== Content from {SOURCE_URLS[0]} ===" in report.combined_text()


class TestScrapeService:
    """Tests for the Apify-backed adapter."""

    async def test_missing_token_fails_every_source(self):
        adapter = ScrapeServiceAdapter(make_settings(discovery_mode="scrape_service"))
        report = await adapter.discover()
        assert report.total == 3
        assert report.all_failed
        assert all("APIFY_TOKEN" in r.error for r in report.results)

    async def test_items_matched_to_sources(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["token"] == "apify-token"
            assert "apify~web-scraper" in request.url.path
            return httpx.Response(200, json=[
                {"source_url": SOURCE_URLS[0], "raw_content": EVENT_PAGE},
                {"source_url": SOURCE_URLS[1], "raw_content": "Error processing page: boom"},
            ])

        adapter = ScrapeServiceAdapter(
            make_settings(discovery_mode="scrape_service", apify_token="apify-token"),
            transport=httpx.MockTransport(handler),
        )
        report = await adapter.discover()
        assert report.total == 3
        assert len(report.successful) == 1
        assert "Harvest Festival" in report.successful[0].text
        errors = {r.source: r.error for r in report.failed}
        assert errors[SOURCE_URLS[1]].startswith("Error processing page")
        assert errors[SOURCE_URLS[2]] == "no item returned"

    async def test_actor_failure_fails_every_source(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="actor crashed"))
        adapter = ScrapeServiceAdapter(
            make_settings(discovery_mode="scrape_service", apify_token="t"), transport=transport
        )
        report = await adapter.discover()
        assert report.all_failed
        assert len(report.failed) == 3


class TestPushAdapter:
    """Tests for the adapter reading pushed raw events."""

    async def test_reads_only_unprocessed_rows(self, session):
        session.add_all([
            RawEvent(source_url="https://a.example", source_name="A", raw_content="Title: Wine festival", content_length=20),
            RawEvent(source_url="https://b.example", source_name="B", raw_content="Title: Old", content_length=10, is_processed=True),
        ])
        await session.commit()

        report = await PushIngestionAdapter(make_settings(discovery_mode="push"), session).discover()
        assert report.total == 1
        assert report.results[0].source_name == "A"
        assert len(report.raw_event_ids) == 1

    async def test_batch_limit(self, session):
        session.add_all([
            RawEvent(source_url=f"https://{i}.example", raw_content=f"Event {i}", content_length=7)
            for i in range(5)
        ])
        await session.commit()
        report = await PushIngestionAdapter(make_settings(discovery_mode="push", push_batch_limit=2), session).discover()
        assert report.total == 2


class TestRegistry:
    """Tests for adapter selection by configuration."""

    def test_selects_by_mode(self):
        assert isinstance(get_discovery_adapter(make_settings()), DirectFetchAdapter)
        assert isinstance(
            get_discovery_adapter(make_settings(discovery_mode="scrape_service")), ScrapeServiceAdapter
        )

    def test_push_requires_session(self):
        with pytest.raises(ValueError):
            get_discovery_adapter(make_settings(discovery_mode="push"))

    def test_unknown_mode(self):
        with pytest.raises(ConfigurationError, match="DISCOVERY_MODE"):
            get_discovery_adapter(make_settings(discovery_mode="carrier-pigeon"))


class TestApifyInput:
    def test_actor_path_id(self):
        assert actor_path_id("apify/web-scraper") == "apify~web-scraper"
        assert actor_path_id("apify~web-scraper") == "apify~web-scraper"

    def test_single_page_crawl(self):
        payload = web_scraper_input(SOURCE_URLS, "fn")
        assert payload["startUrls"] == [{"url": u} for u in SOURCE_URLS]
        assert payload["maxCrawlingDepth"] == 0
        assert payload["maxRequestsPerCrawl"] == 3
