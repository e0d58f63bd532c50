"""
Event classifier: one JSON-mode completion turns scraped text into scored
event candidates; the relevance cutoff is applied here, in code.

Results are tagged: `LiveEvents` for model output, `DemoEvents` for the
canned fallback. Both expose `is_demo_data` so callers must branch.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Union

from dateutil import parser as date_parser

from cellar.services.llm_provider import LLMError, LLMProvider
from cellar.settings import Settings

logger = logging.getLogger(__name__)

CLASSIFIER_PROMPT = """You are an event analyst for local craft-beverage businesses (wineries, breweries, cideries, distilleries).
Read the raw text scraped from local event listings and extract upcoming real-world events those businesses could build marketing content around:
festivals, tastings, food and drink pairings, seasonal celebrations, arts, music or cultural events, holiday markets and similar local happenings.

For every event you find, return:
- event_name: clear descriptive name
- event_date: date or date range as written (ISO format when you can)
- event_location: venue or town
- event_summary: one sentence on what it is and why a craft-beverage business would care
- relevance_score: integer 1-10 (10 = ideal tie-in)
- source_url: the listing URL if the text shows one

Score every event you find; do not drop low-scoring ones.
Today's date is {today}.

Respond ONLY with a JSON object of the form {{"events": [ ... ]}}. Return {{"events": []}} when nothing qualifies."""


# Two defaults that differ in year, month and day: a field missing from the
# text shows up as a disagreement between the two parses.
_DATE_DEFAULTS = (datetime(2001, 1, 1), datetime(2002, 2, 2))


def parse_event_date(value: str | None) -> datetime | None:
    """Parse a model-written date; None unless year, month and day are all in the text.

    "December 2025" or "Every Saturday" are not dates an event can be pinned to.
    """
    if not value or not str(value).strip():
        return None
    try:
        first, second = (date_parser.parse(str(value), fuzzy=True, default=d) for d in _DATE_DEFAULTS)
    except (ValueError, OverflowError, TypeError):
        return None
    if first.date() != second.date():
        return None
    return first


def _as_score(value: Any) -> int:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return 0


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass
class EventCandidate:
    event_name: str
    event_date: str = ""
    event_location: str = ""
    event_summary: str = ""
    relevance_score: int = 0
    source_url: str = ""

    @classmethod
    def from_raw(cls, raw: Any) -> "EventCandidate":
        raw = raw if isinstance(raw, dict) else {}
        return cls(
            event_name=_as_text(raw.get("event_name")),
            event_date=_as_text(raw.get("event_date")),
            event_location=_as_text(raw.get("event_location")),
            event_summary=_as_text(raw.get("event_summary")),
            relevance_score=_as_score(raw.get("relevance_score")),
            source_url=_as_text(raw.get("source_url")),
        )

    @property
    def parsed_date(self) -> datetime | None:
        return parse_event_date(self.event_date)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.event_name,
            "date": self.event_date,
            "location": self.event_location,
            "relevance": self.relevance_score,
        }


@dataclass
class LiveEvents:
    """Events extracted by the model."""
    events: list[EventCandidate]
    extracted: int
    below_threshold: int = 0
    out_of_range: int = 0
    tokens_used: int = 0
    is_demo_data: bool = field(default=False, init=False)


@dataclass
class DemoEvents:
    """Canned events used when the model is unavailable."""
    events: list[EventCandidate]
    extracted: int
    reason: str
    below_threshold: int = 0
    out_of_range: int = 0
    tokens_used: int = 0
    is_demo_data: bool = field(default=True, init=False)


ClassificationResult = Union[LiveEvents, DemoEvents]


def demo_events(today: date) -> list[EventCandidate]:
    def _in(days: int) -> str:
        return (today + timedelta(days=days)).isoformat()

    return [
        EventCandidate(
            event_name="Harvest Festival Weekend",
            event_date=_in(14),
            event_location="Downtown Wine District",
            event_summary="Annual harvest celebration with tastings, live music and local food vendors.",
            relevance_score=9,
        ),
        EventCandidate(
            event_name="Farm-to-Table Wine Dinner Series",
            event_date=_in(21),
            event_location="Local Culinary Center",
            event_summary="Monthly dinner series pairing local wines with seasonal cuisine.",
            relevance_score=8,
        ),
        EventCandidate(
            event_name="Holiday Wine & Gift Market",
            event_date=_in(35),
            event_location="Community Center",
            event_summary="Holiday market with local artisans and makers, ideal for gift promotions.",
            relevance_score=7,
        ),
    ]


class EventClassifier:
    def __init__(self, settings: Settings, llm: LLMProvider | None):
        self.llm = llm
        self.threshold = settings.relevance_threshold
        self.demo_on_error = settings.demo_fallback_on_llm_error

    def apply_filters(
        self,
        candidates: list[EventCandidate],
        date_range: tuple[date, date] | None = None,
    ) -> tuple[list[EventCandidate], int, int]:
        """Drop unnamed events, events below the threshold and events outside date_range."""
        kept: list[EventCandidate] = []
        below = out_of_range = 0
        for candidate in candidates:
            if not candidate.event_name:
                continue
            if candidate.relevance_score < self.threshold:
                below += 1
                continue
            if date_range is not None:
                parsed = candidate.parsed_date
                if parsed is not None:
                    start = datetime.combine(date_range[0], time.min)
                    end = datetime.combine(date_range[1], time.max)
                    if not (start <= parsed.replace(tzinfo=None) <= end):
                        out_of_range += 1
                        continue
            kept.append(candidate)
        return kept, below, out_of_range

    def _demo(self, today: date, reason: str, date_range: tuple[date, date] | None) -> DemoEvents:
        candidates = demo_events(today)
        kept, below, out_of_range = self.apply_filters(candidates, date_range)
        logger.warning("Using demo events (%s)", reason)
        return DemoEvents(
            events=kept,
            extracted=len(candidates),
            reason=reason,
            below_threshold=below,
            out_of_range=out_of_range,
        )

    async def classify(
        self,
        text: str,
        *,
        today: date,
        date_range: tuple[date, date] | None = None,
    ) -> ClassificationResult:
        if self.llm is None:
            return self._demo(today, "no LLM API key configured", date_range)

        try:
            completion = await self.llm.complete(
                system=CLASSIFIER_PROMPT.format(today=today.isoformat()),
                user=text,
                json_mode=True,
                max_tokens=2000,
                temperature=0.3,
            )
            data = completion.json()
            raw_events = data.get("events", [])
            if not isinstance(raw_events, list):
                raise LLMError("LLM response field 'events' is not a list")
        except LLMError as exc:
            if self.demo_on_error:
                return self._demo(today, f"LLM classification failed: {exc}", date_range)
            raise

        candidates = [EventCandidate.from_raw(raw) for raw in raw_events]
        kept, below, out_of_range = self.apply_filters(candidates, date_range)
        logger.info(
            "Classifier: %s extracted, %s kept (%s below threshold %s, %s outside date range)",
            len(candidates), len(kept), below, self.threshold, out_of_range,
        )
        return LiveEvents(
            events=kept,
            extracted=len(candidates),
            below_threshold=below,
            out_of_range=out_of_range,
            tokens_used=completion.tokens_used,
        )
