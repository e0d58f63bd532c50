from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from cellar.models import GenerationMethod
from cellar.services.llm_provider import LLMProvider

logger = logging.getLogger(__name__)

MESSAGING_STYLES = ("storytelling", "educational", "conversational", "formal", "inspirational")

BRAND_VOICE_PROMPT = """You are a brand strategist. Analyze the brand guide below and describe the brand's voice.
Respond ONLY with a JSON object with these string fields:
- brand_personality_summary: 2-3 sentences describing the brand's personality
- core_tone_attributes: comma-separated list of 3-5 tone words
- messaging_style: one of storytelling, educational, conversational, formal, inspirational
- vocabulary_to_use: comma-separated words and phrases the brand favours
- vocabulary_to_avoid: comma-separated words and phrases the brand should avoid
- ai_writing_guidelines: concrete instructions for an AI writing in this voice"""

FIELDS = (
    "brand_personality_summary",
    "core_tone_attributes",
    "messaging_style",
    "vocabulary_to_use",
    "vocabulary_to_avoid",
    "ai_writing_guidelines",
)


@dataclass
class BrandVoiceAnalysis:
    brand_personality_summary: str
    core_tone_attributes: str
    messaging_style: str
    vocabulary_to_use: str
    vocabulary_to_avoid: str
    ai_writing_guidelines: str
    analysis_method: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


DEMO_ANALYSIS = BrandVoiceAnalysis(
    brand_personality_summary=(
        "A warm, family-run producer that is proud of its land and craft. "
        "Approachable and knowledgeable without being pretentious."
    ),
    core_tone_attributes="warm, authentic, welcoming, knowledgeable",
    messaging_style="storytelling",
    vocabulary_to_use="handcrafted, estate-grown, small-batch, community, tradition, gather",
    vocabulary_to_avoid="cheap, mass-produced, generic, hype, exclusive",
    ai_writing_guidelines=(
        "Write like the owner talking to a regular guest. Lead with a story or a sensory detail, "
        "keep sentences short, and always invite the reader to visit."
    ),
    analysis_method=GenerationMethod.demo.value,
)


async def analyze_brand_voice(llm: LLMProvider | None, document_text: str) -> BrandVoiceAnalysis:
    """Extract the six brand-voice fields from a brand guide.

    Without an LLM the canned demo analysis is returned, labelled `demo_template`.
    """
    if llm is None:
        logger.info("Brand voice analysis: no LLM configured, returning demo analysis")
        return DEMO_ANALYSIS

    completion = await llm.complete(
        system=BRAND_VOICE_PROMPT,
        user=document_text,
        json_mode=True,
        max_tokens=1000,
        temperature=0.3,
    )
    data = completion.json()
    values = {name: str(data.get(name) or "").strip() for name in FIELDS}
    if values["messaging_style"].lower() in MESSAGING_STYLES:
        values["messaging_style"] = values["messaging_style"].lower()
    logger.info("Brand voice analysis complete (%s tokens)", completion.tokens_used)
    return BrandVoiceAnalysis(**values, analysis_method=GenerationMethod.openai.value)
