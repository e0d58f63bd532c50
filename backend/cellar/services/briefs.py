"""
Brief materializer: turns one accepted event candidate into research briefs,
one per (event, business) pair that passes the per-business gates.

Briefs are content-addressed by `brief_dedup_key`; an existing key is
reported, never inserted twice. Each insert runs in its own savepoint so a
rejected row does not abort the batch.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timezone

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cellar.models import BusinessProfile, ContentItem, ResearchBrief
from cellar.services.classifier import EventCandidate
from cellar.services.dedupe import brief_dedup_key, normalize_text
from cellar.settings import Settings

logger = logging.getLogger(__name__)

# Tokens too generic to place an event in a region.
LOCATION_STOPWORDS = {
    "the", "and", "of", "at", "in", "on", "near", "downtown", "local", "center", "centre",
    "county", "city", "town", "village", "street", "st", "road", "rd", "ave", "avenue",
    "va", "virginia", "usa", "us", "md", "dc", "north", "south", "east", "west",
    "northern", "southern", "community", "district", "park", "hall", "winery", "brewery",
    "vineyard", "vineyards", "farm", "market",
}


def location_tokens(value: str | None) -> set[str]:
    return {
        token
        for token in normalize_text(value).split()
        if len(token) >= 3 and token not in LOCATION_STOPWORDS and not token.isdigit()
    }


def location_matches(event_location: str | None, profile: BusinessProfile, all_profiles: list[BusinessProfile]) -> bool:
    """True unless the event is placed in some known business region that is not this business's.

    An event location that names no known region (or a business without a
    location) is not gated.
    """
    event_tokens = location_tokens(event_location)
    own = location_tokens(profile.location)
    if not event_tokens or not own:
        return True
    known = set().union(*(location_tokens(p.location) for p in all_profiles))
    regional = event_tokens & known
    if not regional:
        return True
    return bool(regional & own)


def competitor_for(candidate: EventCandidate, profiles: list[BusinessProfile]) -> BusinessProfile | None:
    """The known business the event names, if any."""
    haystack = f" {normalize_text(candidate.event_name)} {normalize_text(candidate.event_location)} "
    for profile in profiles:
        name = normalize_text(profile.business_name)
        if name and f" {name} " in haystack:
            return profile
    return None


def brief_fields(candidate: EventCandidate) -> dict:
    parsed = candidate.parsed_date
    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    key_points = [
        f"Event: {candidate.event_name}",
        f"Date: {candidate.event_date or 'TBD'}",
        f"Location: {candidate.event_location or 'TBD'}",
        f"Summary: {candidate.event_summary}",
        f"Relevance Score: {candidate.relevance_score}/10",
    ]
    if candidate.source_url:
        key_points.append(f"Source: {candidate.source_url}")
    return {
        "suggested_theme": f"Local Event Opportunity: {candidate.event_name}",
        "key_points": key_points,
        "local_event_name": candidate.event_name,
        "local_event_date": parsed,
        "local_event_location": candidate.event_location or None,
        "seasonal_context": f"Proactive opportunity identified by Event Engine. {candidate.event_summary}".strip(),
        "relevance_score": candidate.relevance_score,
        "source_url": candidate.source_url or None,
    }


@dataclass
class MaterializeReport:
    created: list[ResearchBrief] = field(default_factory=list)
    existing: int = 0
    skipped: int = 0
    competitor_filtered: int = 0
    location_filtered: int = 0
    failed: int = 0


class BriefMaterializer:
    def __init__(self, settings: Settings):
        self.threshold = settings.relevance_threshold
        self.location_filter = settings.location_filter_enabled

    async def materialize(
        self,
        session: AsyncSession,
        candidate: EventCandidate,
        profiles: list[BusinessProfile],
        *,
        all_profiles: list[BusinessProfile] | None = None,
        is_demo_data: bool = False,
    ) -> MaterializeReport:
        """Create missing briefs for `candidate` across `profiles`. Caller commits.

        `all_profiles` is the set competitor and region checks look at; it
        defaults to `profiles`.
        """
        report = MaterializeReport()
        known = all_profiles if all_profiles is not None else profiles

        if not candidate.event_name or candidate.relevance_score < self.threshold:
            report.skipped = len(profiles)
            return report

        competitor = competitor_for(candidate, known)
        fields = brief_fields(candidate)
        # Without a full calendar date the normalized raw text keys the brief.
        date_key = fields["local_event_date"] or candidate.event_date

        for profile in profiles:
            if competitor is not None and competitor.id != profile.id:
                report.competitor_filtered += 1
                continue
            if self.location_filter and not location_matches(candidate.event_location, profile, known):
                report.location_filtered += 1
                continue

            key = brief_dedup_key(candidate.event_name, date_key, profile.id)
            found = await session.scalar(select(ResearchBrief.id).where(ResearchBrief.dedup_key == key))
            if found is not None:
                report.existing += 1
                continue

            brief = ResearchBrief(business_id=profile.id, dedup_key=key, is_demo_data=is_demo_data, **fields)
            try:
                async with session.begin_nested():
                    session.add(brief)
            except IntegrityError:
                # Lost a race with a concurrent run writing the same key.
                report.existing += 1
                continue
            except SQLAlchemyError:
                logger.exception(
                    "Failed to create brief for event %r business_id=%s", candidate.event_name, profile.id
                )
                report.failed += 1
                continue
            report.created.append(brief)

        logger.info(
            "Briefs for %r: created=%s existing=%s competitor_filtered=%s location_filtered=%s failed=%s",
            candidate.event_name,
            len(report.created),
            report.existing,
            report.competitor_filtered,
            report.location_filtered,
            report.failed,
        )
        return report


async def delete_brief(session: AsyncSession, brief_id: int, *, cascade: bool = True) -> int | None:
    """Delete a brief; with cascade, its content items go too.

    Returns the number of content items deleted, or None when the brief does not exist.
    """
    brief = await session.get(ResearchBrief, brief_id)
    if brief is None:
        return None

    deleted = 0
    if cascade:
        deleted = await session.scalar(
            select(func.count()).select_from(ContentItem).where(ContentItem.research_brief_id == brief_id)
        ) or 0
        await session.execute(delete(ContentItem).where(ContentItem.research_brief_id == brief_id))
    await session.delete(brief)
    await session.commit()
    logger.info("Deleted brief %s (content items removed: %s)", brief_id, deleted)
    return deleted
