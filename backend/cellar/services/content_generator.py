"""
Content generator: brand voice + content request (+ optional brief) -> one
draft ContentItem.

With an LLM configured the text comes from a single completion
(`generation_method="openai_gpt4"`); without one a deterministic template
fills the same fields (`generation_method="demo_template"`).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from bs4 import BeautifulSoup
from sqlalchemy.ext.asyncio import AsyncSession

from cellar.models import BusinessProfile, ContentItem, ContentStatus, ContentType, GenerationMethod, ResearchBrief
from cellar.schemas import ContentItemRead, ContentRequest
from cellar.services.llm_provider import LLMProvider
from cellar.settings import Settings

logger = logging.getLogger(__name__)

NOT_SPECIFIED = "Not specified"

FORMAT_GUIDANCE: dict[ContentType, str] = {
    ContentType.blog_post: (
        "FORMAT: blog post. Start with a compelling headline on the first line. "
        "Use HTML with <h2>/<h3> subheadings and <p> paragraphs. 300-500 words. "
        "Close with the call to action."
    ),
    ContentType.social_media: (
        "FORMAT: social media post. Under 280 characters. Conversational, 1-3 relevant emojis, "
        "3-5 hashtags at the end. First line is a short hook used as the title."
    ),
    ContentType.newsletter: (
        "FORMAT: email newsletter. Subject line first, then a warm greeting, 2-4 short sections, "
        "200-400 words, sign off from the owner."
    ),
    ContentType.press_release: (
        "FORMAT: press release. Headline first, then a dateline paragraph, one quote from the owner, "
        "300-400 words, and a short 'About' boilerplate at the end."
    ),
    ContentType.event_promotion: (
        "FORMAT: event promotion. Event name as the headline, then what/when/where, why attend, "
        "250-400 words, urgent but friendly call to action."
    ),
    ContentType.product_announcement: (
        "FORMAT: product announcement. Product-focused headline, tasting notes or key features, "
        "availability details, 200-350 words."
    ),
    ContentType.educational_content: (
        "FORMAT: educational article. Clear explanatory headline, HTML subheadings, practical tips, "
        "400-600 words, approachable for newcomers."
    ),
}

SYSTEM_PROMPT = (
    "You are an expert marketing copywriter for small craft-beverage businesses. "
    "You write in the exact brand voice you are given and never invent facts about the business."
)

_TAG_RE = re.compile(r"<[^>]+>")


def word_count(text: str) -> int:
    if not text:
        return 0
    plain = BeautifulSoup(text, "html.parser").get_text(separator=" ")
    return len(plain.split())


def extract_title(text: str, fallback: str) -> str:
    """First non-empty line without markdown heading marks or tags."""
    for line in (text or "").splitlines():
        line = _TAG_RE.sub("", line).strip().lstrip("#").strip()
        if line:
            return line[:255]
    return fallback


def brand_voice_applied(profile: BusinessProfile) -> dict[str, str]:
    return {
        "personality": profile.brand_personality_summary or NOT_SPECIFIED,
        "tone_attributes": profile.core_tone_attributes or NOT_SPECIFIED,
        "messaging_style": profile.messaging_style or NOT_SPECIFIED,
        "vocabulary_used": profile.vocabulary_to_use or NOT_SPECIFIED,
        "vocabulary_avoided": profile.vocabulary_to_avoid or NOT_SPECIFIED,
        "writing_guidelines": profile.ai_writing_guidelines or NOT_SPECIFIED,
    }


def _brief_summary(brief: ResearchBrief) -> str:
    for point in brief.key_points or []:
        if isinstance(point, str) and point.startswith("Summary:"):
            return point[len("Summary:"):].strip()
    return ""


def request_from_brief(brief: ResearchBrief, profile: BusinessProfile) -> ContentRequest:
    """Auto-derived social post for a brief.

    Only a brief with a known event date gets date details and a dated call to action.
    """
    name = brief.local_event_name or brief.suggested_theme
    summary = _brief_summary(brief) or brief.suggested_theme
    location = brief.local_event_location or "a local venue"

    if brief.local_event_date is not None:
        when = brief.local_event_date.strftime("%B %d, %Y")
        talking_points = (
            f"{summary} Event details: {when} at {location}. "
            f"This is a great opportunity for {profile.business_name} to connect with the local community."
        )
        cta = f"Join us on {brief.local_event_date.strftime('%B %d')} and discover what we're pouring!"
    else:
        talking_points = (
            f"{summary} Location: {location}. "
            f"This is a great opportunity for {profile.business_name} to connect with the local community."
        )
        cta = "Stop by and discover what we're pouring!"

    return ContentRequest(
        content_type=ContentType.social_media,
        primary_topic=f"Upcoming local event: {name}",
        key_talking_points=talking_points,
        call_to_action=cta,
    )


def build_prompt(profile: BusinessProfile, request: ContentRequest, brief: ResearchBrief | None = None) -> str:
    """Every populated profile field, every request field, optional brief context, format guidance."""
    lines: list[str] = [f"BUSINESS: {profile.business_name}"]
    profile_fields = [
        ("Owner", profile.owner_name),
        ("Location", profile.location),
        ("Backstory", profile.backstory),
        ("Products", ", ".join(profile.product_types) if profile.product_types else None),
        ("Target audience", profile.target_audience),
    ]
    lines += [f"{label}: {value}" for label, value in profile_fields if value]

    voice_fields = [
        ("Brand personality", profile.brand_personality_summary),
        ("Core tone attributes", profile.core_tone_attributes),
        ("Messaging style", profile.messaging_style),
        ("Vocabulary to use", profile.vocabulary_to_use),
        ("Vocabulary to avoid", profile.vocabulary_to_avoid),
        ("Writing guidelines", profile.ai_writing_guidelines),
    ]
    voice = [f"- {label}: {value}" for label, value in voice_fields if value]
    if voice:
        lines.append("")
        lines.append("BRAND VOICE (follow strictly):")
        lines += voice

    lines.append("")
    lines.append("CONTENT REQUEST:")
    lines.append(f"- Content type: {request.content_type.value}")
    lines.append(f"- Primary topic: {request.primary_topic}")
    lines.append(f"- Key talking points: {request.key_talking_points}")
    if request.call_to_action:
        lines.append(f"- Call to action: {request.call_to_action}")

    if brief is not None:
        lines.append("")
        lines.append("RESEARCH BRIEF:")
        lines.append(f"- Theme: {brief.suggested_theme}")
        for point in brief.key_points or []:
            lines.append(f"- {point}")
        if brief.seasonal_context:
            lines.append(f"- Context: {brief.seasonal_context}")

    lines.append("")
    lines.append(FORMAT_GUIDANCE[request.content_type])
    return "\n".join(lines)


# ── Demo templates ────────────────────────────────────────────

def _cta(request: ContentRequest, profile: BusinessProfile) -> str:
    return request.call_to_action or f"Visit {profile.business_name} soon!"


def render_demo(profile: BusinessProfile, request: ContentRequest) -> tuple[str, str]:
    """Deterministic (title, body) for one content type."""
    name = profile.business_name
    topic = request.primary_topic
    points = request.key_talking_points
    cta = _cta(request, profile)
    place = f" in {profile.location}" if profile.location else ""
    ctype = request.content_type

    if ctype == ContentType.social_media:
        title = topic
        tag = re.sub(r"[^A-Za-z0-9]", "", name)
        body = f"{topic} 🍷 {points} {cta} #{tag} #ShopLocal #CraftBeverage"
    elif ctype == ContentType.newsletter:
        title = f"{name} News: {topic}"
        body = (
            f"<p>Hello friends,</p>\n"
            f"<p>We have news to share about {topic.lower()}.</p>\n"
            f"<p>{points}</p>\n"
            f"<p>{cta}</p>\n"
            f"<p>Cheers,<br>{profile.owner_name or 'The ' + name + ' team'}</p>"
        )
    elif ctype == ContentType.press_release:
        title = f"{name} Announces {topic}"
        body = (
            f"<h1>{title}</h1>\n"
            f"<p>{profile.location or 'LOCAL'}: {name} today announced {topic.lower()}.</p>\n"
            f"<p>{points}</p>\n"
            f"<p>{cta}</p>\n"
            f"<h3>About {name}</h3>\n"
            f"<p>{profile.backstory or name + ' is an independent craft-beverage producer' + place + '.'}</p>"
        )
    elif ctype == ContentType.event_promotion:
        title = f"Join Us: {topic}"
        body = (
            f"<h1>{title}</h1>\n"
            f"<p>{name} invites you to {topic.lower()}{place}.</p>\n"
            f"<p>{points}</p>\n"
            f"<p><strong>{cta}</strong></p>"
        )
    elif ctype == ContentType.product_announcement:
        title = f"Introducing {topic}"
        body = (
            f"<h1>{title}</h1>\n"
            f"<p>We are proud to share something new from {name}.</p>\n"
            f"<p>{points}</p>\n"
            f"<p>{cta}</p>"
        )
    elif ctype == ContentType.educational_content:
        title = f"Understanding {topic}"
        body = (
            f"<h1>{title}</h1>\n"
            f"<h2>The basics</h2>\n"
            f"<p>{points}</p>\n"
            f"<h2>Learn more at {name}</h2>\n"
            f"<p>{cta}</p>"
        )
    else:
        title = topic
        body = (
            f"<h1>{topic}</h1>\n"
            f"<p>At {name}{place}, we love sharing what we make.</p>\n"
            f"<h2>What you should know</h2>\n"
            f"<p>{points}</p>\n"
            f"<p>{cta}</p>"
        )
    return title, body


@dataclass
class GenerationOutcome:
    item: ContentItem
    brand_voice_applied: dict[str, str]
    word_count: int
    generation_method: str
    tokens_used: int | None = None

    def as_data(self, request: ContentRequest) -> dict[str, Any]:
        return {
            "content": ContentItemRead.model_validate(self.item),
            "brand_voice_applied": self.brand_voice_applied,
            "content_request": request,
            "word_count": self.word_count,
            "generation_method": self.generation_method,
            "tokens_used": self.tokens_used,
        }


class ContentGenerator:
    def __init__(self, settings: Settings, llm: LLMProvider | None):
        self.settings = settings
        self.llm = llm

    async def generate(
        self,
        session: AsyncSession,
        profile: BusinessProfile,
        request: ContentRequest,
        *,
        brief: ResearchBrief | None = None,
        commit: bool = True,
    ) -> GenerationOutcome:
        """Generate text and insert one draft ContentItem.

        LLMError propagates unchanged; nothing is inserted in that case.
        """
        tokens_used: int | None = None
        if self.llm is None:
            title, body = render_demo(profile, request)
            method = GenerationMethod.demo.value
        else:
            completion = await self.llm.complete(
                system=SYSTEM_PROMPT,
                user=build_prompt(profile, request, brief),
                max_tokens=1500,
                temperature=0.7,
            )
            body = completion.text.strip()
            title = extract_title(body, request.primary_topic)
            method = GenerationMethod.openai.value
            tokens_used = completion.tokens_used

        item = ContentItem(
            business_id=profile.id,
            title=title,
            body=body,
            content_type=request.content_type.value,
            status=ContentStatus.draft.value,
            research_brief_id=brief.id if brief is not None else None,
            generation_method=method,
        )
        session.add(item)
        if commit:
            await session.commit()
            await session.refresh(item)
        else:
            await session.flush()

        count = word_count(body)
        logger.info(
            "Generated %s for business_id=%s via %s (%s words)",
            request.content_type.value, profile.id, method, count,
        )
        return GenerationOutcome(
            item=item,
            brand_voice_applied=brand_voice_applied(profile),
            word_count=count,
            generation_method=method,
            tokens_used=tokens_used,
        )
