"""
Event pipeline: discover -> classify -> materialize briefs -> generate content.

One run happens inside one request (or one scheduler tick). The
(event x business) loop is sequential with a fixed delay between
iterations; a brief whose content fails to generate stays as it is.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import httpx
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cellar.models import BusinessProfile, RawEvent
from cellar.services.briefs import BriefMaterializer
from cellar.services.classifier import EventClassifier
from cellar.services.content_generator import ContentGenerator, request_from_brief
from cellar.services.discovery import get_discovery_adapter
from cellar.services.llm_provider import LLMError, LLMProvider
from cellar.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    success: bool
    message: str
    mode: str
    error: str | None = None
    is_demo_data: bool = False
    demo_reason: str | None = None
    scraped_sources: int = 0
    total_sources: int = 0
    raw_events_processed: int = 0
    events_extracted: int = 0
    events_final: int = 0
    events_below_threshold: int = 0
    competitor_events_filtered: int = 0
    location_filtered: int = 0
    briefs_created: int = 0
    briefs_existing: int = 0
    briefs_failed: int = 0
    content_generated: int = 0
    content_failed: int = 0
    events: list[dict[str, Any]] = field(default_factory=list)
    sources: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class EventPipeline:
    def __init__(
        self,
        settings: Settings,
        llm: LLMProvider | None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.transport = transport
        self.classifier = EventClassifier(settings, llm)
        self.materializer = BriefMaterializer(settings)
        self.generator = ContentGenerator(settings, llm)
        self.delay = max(settings.pipeline_iteration_delay_ms, 0) / 1000

    async def run(
        self,
        session: AsyncSession,
        *,
        date_range: tuple[date, date] | None = None,
        business_id: int | None = None,
        today: date | None = None,
    ) -> PipelineResult:
        today = today or datetime.now(timezone.utc).date()
        adapter = get_discovery_adapter(self.settings, session=session, transport=self.transport)
        report = await adapter.discover(date_range)
        sources = [r.to_dict() for r in report.results]
        result = PipelineResult(
            success=True,
            message="",
            mode=report.mode,
            scraped_sources=len(report.successful),
            total_sources=report.total,
            sources=sources,
        )
        logger.info(
            "Pipeline discovery (%s): %s/%s sources ok", report.mode, result.scraped_sources, result.total_sources
        )

        if report.all_failed:
            result.success = False
            result.error = "Failed to fetch any event sources"
            result.message = f"All {report.total} event sources failed; no events were classified"
            return result

        text = report.combined_text()
        if not text:
            result.message = (
                "No unprocessed raw events to classify" if report.mode == "push"
                else "No event-related text found in any source"
            )
            return result

        raw_ids = report.raw_event_ids
        try:
            classification = await self.classifier.classify(text, today=today, date_range=date_range)
        except LLMError as exc:
            if raw_ids:
                await self._flag_raw_events(session, raw_ids, error=str(exc))
            raise

        result.is_demo_data = classification.is_demo_data
        result.demo_reason = getattr(classification, "reason", None)
        result.events_extracted = classification.extracted
        result.events_below_threshold = classification.below_threshold
        result.events_final = len(classification.events)
        result.events = [e.to_dict() for e in classification.events]

        stmt = select(BusinessProfile).order_by(BusinessProfile.id)
        all_profiles = list((await session.execute(stmt)).scalars().all())
        targets = [p for p in all_profiles if business_id is None or p.id == business_id]
        by_id = {p.id: p for p in targets}

        for candidate in classification.events:
            mat = await self.materializer.materialize(
                session,
                candidate,
                targets,
                all_profiles=all_profiles,
                is_demo_data=classification.is_demo_data,
            )
            try:
                await session.commit()
            except SQLAlchemyError:
                logger.exception("Failed to commit briefs for event %r", candidate.event_name)
                await self._recover(session, all_profiles)
                result.briefs_failed += len(mat.created) + mat.failed
                continue

            result.briefs_created += len(mat.created)
            result.briefs_existing += mat.existing
            result.briefs_failed += mat.failed
            result.location_filtered += mat.location_filtered
            if mat.competitor_filtered:
                result.competitor_events_filtered += 1

            for index, brief in enumerate(mat.created):
                profile = by_id[brief.business_id]
                try:
                    await self.generator.generate(session, profile, request_from_brief(brief, profile), brief=brief)
                    result.content_generated += 1
                except LLMError as exc:
                    logger.warning(
                        "Content generation failed for brief %s (business_id=%s): %s", brief.id, profile.id, exc
                    )
                    result.content_failed += 1
                except SQLAlchemyError:
                    logger.exception("Failed to store content for brief %s", brief.id)
                    await self._recover(session, [*all_profiles, *mat.created[index + 1:]])
                    result.content_failed += 1
                if self.delay:
                    await asyncio.sleep(self.delay)

        # Demo events say nothing about the pushed rows; leave them for a live pass.
        if raw_ids and not classification.is_demo_data:
            await self._flag_raw_events(session, raw_ids)
            result.raw_events_processed = len(raw_ids)

        result.message = (
            f"Found {result.events_final} relevant events, created {result.briefs_created} research briefs "
            f"and {result.content_generated} content drafts"
        )
        if result.is_demo_data:
            result.message += " (demo data)"
        logger.info(
            "Pipeline done: extracted=%s final=%s briefs=%s existing=%s content=%s content_failed=%s",
            result.events_extracted,
            result.events_final,
            result.briefs_created,
            result.briefs_existing,
            result.content_generated,
            result.content_failed,
        )
        return result

    async def _recover(self, session: AsyncSession, instances: list[Any]) -> None:
        """Roll back and reload instances the rollback expired."""
        await session.rollback()
        for instance in instances:
            await session.refresh(instance)

    async def _flag_raw_events(self, session: AsyncSession, ids: list[int], *, error: str | None = None) -> None:
        """Mark pushed rows processed, or record why classification failed."""
        if error is None:
            values: dict[str, Any] = {
                "is_processed": True,
                "processed_at": datetime.now(timezone.utc),
                "error_message": None,
            }
        else:
            values = {"error_message": error[:1000]}
        await session.execute(update(RawEvent).where(RawEvent.id.in_(ids)).values(**values))
        await session.commit()
