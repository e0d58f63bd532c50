"""
Content plan: turn a profile's weekly `content_goals` into scheduled drafts.

Slots are spaced two days apart starting tomorrow. Content types and themes
rotate so consecutive drafts differ. Each draft goes through the regular
content generator, so it is an LLM draft or a labelled demo template.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cellar.models import BusinessProfile, ContentItem, ContentType
from cellar.schemas import ContentItemRead, ContentRequest
from cellar.services.content_generator import ContentGenerator
from cellar.services.llm_provider import LLMError, LLMProvider
from cellar.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_GOALS = 3
SLOT_GAP_DAYS = 2
SLOT_TIME = dt_time(hour=10)
POSTING_SCHEDULE = "Every 2 days for optimal engagement"

CONTENT_ROTATION = (ContentType.blog_post, ContentType.social_media, ContentType.newsletter)
THEMES = (
    "Behind the Scenes",
    "Food Pairing Guide",
    "Seasonal Selection",
    "How We Make It",
    "Local Events",
)


@dataclass(frozen=True)
class PlanSlot:
    content_type: ContentType
    theme: str
    scheduled_date: datetime


def plan_slots(goal: int, today: date) -> list[PlanSlot]:
    """`goal` slots at today+1, today+3, today+5 ... with rotated type and theme."""
    slots = []
    for i in range(goal):
        day = today + timedelta(days=SLOT_GAP_DAYS * i + 1)
        slots.append(PlanSlot(
            content_type=CONTENT_ROTATION[i % len(CONTENT_ROTATION)],
            theme=THEMES[i % len(THEMES)],
            scheduled_date=datetime.combine(day, SLOT_TIME, tzinfo=timezone.utc),
        ))
    return slots


def talking_points(profile: BusinessProfile, theme: str) -> str:
    parts = [f"{theme} at {profile.business_name}"]
    if profile.location:
        parts.append(f"Visit us in {profile.location}")
    if profile.product_types:
        parts.append("We make " + ", ".join(str(p) for p in profile.product_types))
    if profile.backstory:
        parts.append(profile.backstory)
    return ". ".join(parts)


@dataclass
class ContentPlan:
    items: list[ContentItem] = field(default_factory=list)
    themes: list[str] = field(default_factory=list)
    weekly_goals: int = 0
    generation_method: str | None = None

    @property
    def message(self) -> str:
        return f"Content strategy created with {len(self.items)} pieces of content"

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_items": [ContentItemRead.model_validate(i) for i in self.items],
            "strategy": {
                "weekly_goals": self.weekly_goals,
                "content_themes": self.themes,
                "posting_schedule": POSTING_SCHEDULE,
            },
        }


class ContentPlanner:
    def __init__(self, settings: Settings, llm: LLMProvider | None):
        self.generator = ContentGenerator(settings, llm)

    async def plan(self, session: AsyncSession, profile: BusinessProfile, *, today: date | None = None) -> ContentPlan:
        """Insert one scheduled draft per slot, all or nothing.

        An LLMError on any slot rolls back the drafts already made and propagates.
        """
        today = today or datetime.now(timezone.utc).date()
        business_id = profile.id
        goal = profile.content_goals or DEFAULT_CONTENT_GOALS
        slots = plan_slots(goal, today)
        plan = ContentPlan(weekly_goals=goal, themes=list(dict.fromkeys(s.theme for s in slots)))

        try:
            async with session.begin_nested():
                for slot in slots:
                    request = ContentRequest(
                        content_type=slot.content_type,
                        primary_topic=slot.theme,
                        key_talking_points=talking_points(profile, slot.theme),
                    )
                    outcome = await self.generator.generate(session, profile, request, commit=False)
                    outcome.item.scheduled_date = slot.scheduled_date
                    plan.items.append(outcome.item)
                    plan.generation_method = outcome.generation_method
        except LLMError:
            await session.rollback()
            logger.warning("Content plan for business_id=%s aborted after %s drafts", business_id, len(plan.items))
            raise

        await session.commit()
        for item in plan.items:
            await session.refresh(item)
        logger.info(
            "Planned %s drafts for business_id=%s via %s", len(plan.items), business_id, plan.generation_method,
        )
        return plan
