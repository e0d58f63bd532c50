"""
Tests for the brief materializer.

Covers idempotent upsert, per-business gating and cascade delete.
"""
from sqlalchemy import func, select

from conftest import make_settings
from cellar.models import ContentItem, EngagementMetric, ResearchBrief
from cellar.services.briefs import BriefMaterializer, competitor_for, delete_brief, location_matches
from cellar.services.classifier import EventCandidate
from cellar.services.dedupe import brief_dedup_key, normalize_text


def candidate(**fields) -> EventCandidate:
    values = {
        "event_name": "Leesburg Harvest Festival",
        "event_date": "2025-10-12",
        "event_location": "Leesburg",
        "event_summary": "Tastings and live music downtown.",
        "relevance_score": 9,
    }
    values.update(fields)
    return EventCandidate(**values)


async def brief_count(session) -> int:
    return await session.scalar(select(func.count()).select_from(ResearchBrief))


class TestDedupKey:
    def test_normalization_makes_key_stable(self):
        a = brief_dedup_key("Harvest  Festival!", "2025-10-12", 1)
        b = brief_dedup_key("harvest festival", "2025-10-12", 1)
        assert a == b
        assert len(a) == 40

    def test_business_is_part_of_the_key(self):
        assert brief_dedup_key("Fest", "2025-10-12", 1) != brief_dedup_key("Fest", "2025-10-12", 2)

    def test_normalize_text(self):
        assert normalize_text("  Wine &  Cheese\tNight ") == "wine cheese night"
        assert normalize_text(None) == ""


class TestMaterialize:
    async def test_creates_one_brief_per_business(self, session, make_profile):
        a = await make_profile(business_name="Blue Ridge Cellars", location="Leesburg, VA")
        b = await make_profile(business_name="Hillside Cider", location="Leesburg, VA")

        report = await BriefMaterializer(make_settings()).materialize(session, candidate(), [a, b])
        await session.commit()

        assert len(report.created) == 2
        brief = report.created[0]
        assert brief.suggested_theme == "Local Event Opportunity: Leesburg Harvest Festival"
        assert "Relevance Score: 9/10" in brief.key_points
        assert brief.seasonal_context.startswith("Proactive opportunity identified by Event Engine.")
        assert brief.local_event_date is not None
        assert brief.is_demo_data is False

    async def test_running_twice_does_not_duplicate(self, session, make_profile):
        profile = await make_profile()
        materializer = BriefMaterializer(make_settings())

        first = await materializer.materialize(session, candidate(), [profile])
        await session.commit()
        second = await materializer.materialize(session, candidate(event_name="leesburg harvest festival"), [profile])
        await session.commit()

        assert len(first.created) == 1
        assert second.created == []
        assert second.existing == 1
        assert await brief_count(session) == 1

    async def test_below_threshold_creates_nothing(self, session, make_profile):
        profile = await make_profile()
        report = await BriefMaterializer(make_settings()).materialize(
            session, candidate(relevance_score=3), [profile]
        )
        assert report.created == []
        assert report.skipped == 1
        assert await brief_count(session) == 0

    async def test_competitor_event_only_for_named_business(self, session, make_profile):
        host = await make_profile(business_name="Hillside Cider", location="Leesburg, VA")
        other = await make_profile(business_name="Blue Ridge Cellars", location="Leesburg, VA")

        report = await BriefMaterializer(make_settings()).materialize(
            session, candidate(event_name="Hillside Cider Pressing Party"), [host, other]
        )
        assert [b.business_id for b in report.created] == [host.id]
        assert report.competitor_filtered == 1

    async def test_location_gate(self, session, make_profile):
        local = await make_profile(business_name="Blue Ridge Cellars", location="Leesburg, VA")
        remote = await make_profile(business_name="Tidewater Brewing", location="Norfolk, VA")

        report = await BriefMaterializer(make_settings()).materialize(session, candidate(), [local, remote])
        assert [b.business_id for b in report.created] == [local.id]
        assert report.location_filtered == 1

    async def test_location_gate_can_be_disabled(self, session, make_profile):
        local = await make_profile(business_name="Blue Ridge Cellars", location="Leesburg, VA")
        remote = await make_profile(business_name="Tidewater Brewing", location="Norfolk, VA")

        report = await BriefMaterializer(make_settings(location_filter_enabled=False)).materialize(
            session, candidate(), [local, remote]
        )
        assert len(report.created) == 2

    async def test_demo_flag_is_stored(self, session, make_profile):
        profile = await make_profile()
        report = await BriefMaterializer(make_settings()).materialize(
            session, candidate(event_location="Community Center"), [profile], is_demo_data=True
        )
        await session.commit()
        assert report.created[0].is_demo_data is True


class TestGates:
    def test_generic_location_is_not_gated(self):
        class P:
            def __init__(self, location):
                self.location = location

        leesburg, norfolk = P("Leesburg, VA"), P("Norfolk, VA")
        assert location_matches("Downtown Community Center", norfolk, [leesburg, norfolk])
        assert location_matches("Leesburg Town Green", leesburg, [leesburg, norfolk])
        assert not location_matches("Leesburg Town Green", norfolk, [leesburg, norfolk])
        assert location_matches("", norfolk, [leesburg, norfolk])

    def test_competitor_requires_whole_name(self):
        class P:
            def __init__(self, pid, name):
                self.id, self.business_name = pid, name

        profiles = [P(1, "Vine"), P(2, "Stone Tower Winery")]
        assert competitor_for(candidate(event_name="Vineyard Tour"), profiles) is None
        assert competitor_for(candidate(event_name="Stone Tower Winery Open House"), profiles).id == 2


class TestDeleteBrief:
    async def test_cascade_deletes_dependent_content(self, session, make_profile, make_brief, make_item):
        profile = await make_profile()
        brief = await make_brief(profile)
        keep = await make_item(profile, title="unrelated")
        first = await make_item(profile, research_brief_id=brief.id)
        await make_item(profile, research_brief_id=brief.id)
        session.add(EngagementMetric(content_item_id=first.id, business_id=profile.id, views=10))
        await session.commit()

        deleted = await delete_brief(session, brief.id)

        assert deleted == 2
        remaining = (await session.execute(select(ContentItem.id))).scalars().all()
        assert remaining == [keep.id]
        assert await brief_count(session) == 0
        # metrics are not cascaded
        assert await session.scalar(select(func.count()).select_from(EngagementMetric)) == 1

    async def test_missing_brief(self, session):
        assert await delete_brief(session, 999) is None

    async def test_without_cascade_items_survive(self, session, make_profile, make_brief, make_item):
        profile = await make_profile()
        brief = await make_brief(profile)
        item = await make_item(profile, research_brief_id=brief.id)

        assert await delete_brief(session, brief.id, cascade=False) == 0
        session.expire_all()
        survivor = await session.get(ContentItem, item.id)
        assert survivor is not None
        assert survivor.research_brief_id is None


class TestPartialDates:
    async def test_month_only_date_is_stable_across_runs(self, session, make_profile):
        profile = await make_profile()
        materializer = BriefMaterializer(make_settings())

        first = await materializer.materialize(session, candidate(event_date="December 2025"), [profile])
        await session.commit()
        second = await materializer.materialize(session, candidate(event_date="december 2025"), [profile])
        await session.commit()

        assert first.created[0].local_event_date is None
        assert first.created[0].dedup_key == brief_dedup_key("Leesburg Harvest Festival", "December 2025", profile.id)
        assert second.existing == 1
        assert await brief_count(session) == 1

    async def test_recurring_event_gets_no_date(self, session, make_profile):
        profile = await make_profile()
        report = await BriefMaterializer(make_settings()).materialize(
            session, candidate(event_date="Every Saturday"), [profile]
        )
        assert report.created[0].local_event_date is None
        assert "Date: Every Saturday" in report.created[0].key_points
