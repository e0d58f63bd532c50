"""
Tests for the event pipeline.

End to end over fake sources and a scripted LLM: discovery, classification,
brief materialization and per-brief content drafts.
"""
import json
from datetime import date

import pytest
from sqlalchemy import func, select

from conftest import EVENT_PAGE, SOURCE_URLS, ScriptedLLM, make_settings, page_transport, timeout_transport
from cellar.models import ContentItem, RawEvent, ResearchBrief
from cellar.services.ingestion import ingest_raw_events
from cellar.services.llm_provider import LLMError
from cellar.services.pipeline import EventPipeline

TODAY = date(2025, 9, 1)


def one_page_up():
    return page_transport({SOURCE_URLS[0]: (200, EVENT_PAGE)})


def events_json(*events: dict) -> str:
    return json.dumps({"events": list(events)})


async def count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


# --- Discovery outcomes ---

class TestDiscoveryOutcomes:
    async def test_all_sources_failing_is_a_failure(self, session, make_profile):
        await make_profile()
        pipeline = EventPipeline(make_settings(), None, transport=timeout_transport())
        result = await pipeline.run(session, today=TODAY)

        assert result.success is False
        assert result.error == "Failed to fetch any event sources"
        assert result.scraped_sources == 0
        assert result.total_sources == 3
        assert await count(session, ResearchBrief) == 0

    async def test_partial_failure_still_runs(self, session, make_profile):
        await make_profile()
        result = await EventPipeline(make_settings(), None, transport=one_page_up()).run(session, today=TODAY)

        assert result.success is True
        assert result.scraped_sources == 1
        assert result.total_sources == 3
        assert [s["success"] for s in result.sources] == [True, False, False]


# --- Demo mode ---

class TestDemoRun:
    async def test_demo_events_create_briefs_and_drafts(self, session, make_profile):
        await make_profile()
        result = await EventPipeline(make_settings(), None, transport=one_page_up()).run(session, today=TODAY)

        assert result.is_demo_data is True
        assert result.events_final == 3
        assert result.briefs_created == 3
        assert result.content_generated == 3
        assert "(demo data)" in result.message

        briefs = (await session.execute(select(ResearchBrief))).scalars().all()
        assert all(b.is_demo_data for b in briefs)
        items = (await session.execute(select(ContentItem))).scalars().all()
        assert {i.generation_method for i in items} == {"demo_template"}
        assert {i.content_type for i in items} == {"social_media"}

    async def test_rerun_is_idempotent(self, session, make_profile):
        await make_profile()
        pipeline = EventPipeline(make_settings(), None, transport=one_page_up())
        await pipeline.run(session, today=TODAY)
        second = await pipeline.run(session, today=TODAY)

        assert second.briefs_created == 0
        assert second.briefs_existing == 3
        assert second.content_generated == 0
        assert await count(session, ResearchBrief) == 3
        assert await count(session, ContentItem) == 3

    async def test_business_filter(self, session, make_profile):
        await make_profile(business_name="Blue Ridge Cellars")
        other = await make_profile(business_name="Hillside Cider")
        result = await EventPipeline(make_settings(), None, transport=one_page_up()).run(
            session, today=TODAY, business_id=other.id
        )

        assert result.briefs_created == 3
        owners = (await session.execute(select(ResearchBrief.business_id))).scalars().all()
        assert set(owners) == {other.id}


# --- Live classification ---

class TestLiveRun:
    async def test_low_relevance_event_creates_no_brief(self, session, make_profile):
        await make_profile()
        llm = ScriptedLLM(events_json(
            {"event_name": "Quarterly Tax Seminar", "event_date": "2025-10-01", "relevance_score": 3}
        ))
        result = await EventPipeline(make_settings(), llm, transport=one_page_up()).run(session, today=TODAY)

        assert result.success is True
        assert result.events_extracted == 1
        assert result.events_below_threshold == 1
        assert result.briefs_created == 0
        assert await count(session, ResearchBrief) == 0
        assert len(llm.calls) == 1

    async def test_content_failure_keeps_the_brief(self, session, make_profile):
        await make_profile()
        llm = ScriptedLLM(
            events_json({"event_name": "Leesburg Harvest Festival", "event_date": "2025-10-12", "relevance_score": 9}),
            LLMError("OpenAI API error (429): rate limited"),
        )
        result = await EventPipeline(make_settings(), llm, transport=one_page_up()).run(session, today=TODAY)

        assert result.briefs_created == 1
        assert result.content_failed == 1
        assert result.content_generated == 0
        assert await count(session, ResearchBrief) == 1
        assert await count(session, ContentItem) == 0

    async def test_live_drafts_are_linked_to_briefs(self, session, make_profile):
        await make_profile()
        llm = ScriptedLLM(
            events_json({"event_name": "Leesburg Harvest Festival", "event_date": "2025-10-12", "relevance_score": 9}),
            "Harvest Weekend\nCome see us at the festival!",
        )
        result = await EventPipeline(make_settings(), llm, transport=one_page_up()).run(session, today=TODAY)

        assert result.is_demo_data is False
        assert result.content_generated == 1
        item = (await session.execute(select(ContentItem))).scalar_one()
        brief = (await session.execute(select(ResearchBrief))).scalar_one()
        assert item.research_brief_id == brief.id
        assert item.generation_method == "openai_gpt4"
        assert "Upcoming local event: Leesburg Harvest Festival" in llm.calls[1]["user"]

    async def test_classification_error_propagates(self, session, make_profile):
        await make_profile()
        llm = ScriptedLLM(LLMError("upstream 500"))
        with pytest.raises(LLMError):
            await EventPipeline(make_settings(), llm, transport=one_page_up()).run(session, today=TODAY)
        assert await count(session, ResearchBrief) == 0


# --- Push mode ---

class TestPushRun:
    pushed = [
        {"title": "Leesburg Harvest Festival", "description": "Wine tastings Oct 12", "link": "https://www.visitloudoun.org/e/1"},
        {"title": "Cider Social", "description": "Hard cider night in Purcellville"},
    ]

    async def test_raw_events_marked_processed(self, session_factory, session, make_profile):
        await make_profile()
        await ingest_raw_events(session, self.pushed)
        llm = ScriptedLLM(
            events_json({"event_name": "Leesburg Harvest Festival", "event_date": "2025-10-12", "relevance_score": 9}),
            "Harvest Weekend\nSee you there.",
        )
        result = await EventPipeline(make_settings(discovery_mode="push"), llm).run(session, today=TODAY)

        assert result.mode == "push"
        assert result.raw_events_processed == 2
        assert "Visit Loudoun Events" in llm.calls[0]["user"]
        async with session_factory() as fresh:
            rows = (await fresh.execute(select(RawEvent))).scalars().all()
            assert all(r.is_processed for r in rows)
            assert all(r.processed_at is not None for r in rows)

    async def test_demo_run_leaves_pushed_rows_unprocessed(self, session_factory, session, make_profile):
        await make_profile()
        await ingest_raw_events(session, self.pushed)
        result = await EventPipeline(make_settings(discovery_mode="push"), None).run(session, today=TODAY)

        assert result.is_demo_data is True
        assert result.raw_events_processed == 0
        async with session_factory() as fresh:
            rows = (await fresh.execute(select(RawEvent))).scalars().all()
            assert len(rows) == 2
            assert not any(r.is_processed for r in rows)

    async def test_empty_pool(self, session, make_profile):
        await make_profile()
        result = await EventPipeline(make_settings(discovery_mode="push"), ScriptedLLM()).run(session, today=TODAY)
        assert result.success is True
        assert result.message == "No unprocessed raw events to classify"

    async def test_classification_failure_is_recorded(self, session_factory, session, make_profile):
        await make_profile()
        await ingest_raw_events(session, self.pushed)
        llm = ScriptedLLM(LLMError("upstream 500"))
        with pytest.raises(LLMError):
            await EventPipeline(make_settings(discovery_mode="push"), llm).run(session, today=TODAY)

        async with session_factory() as fresh:
            rows = (await fresh.execute(select(RawEvent))).scalars().all()
            assert all(not r.is_processed for r in rows)
            assert all(r.error_message == "upstream 500" for r in rows)
