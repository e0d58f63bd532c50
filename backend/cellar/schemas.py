from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from .models import ContentType, status_display

MIN_BRAND_DOCUMENT_CHARS = 50


# ── Profiles ───────────────────────────────────────────────────

class BusinessProfileBase(BaseModel):
    business_name: str
    owner_name: str | None = None
    location: str | None = None
    backstory: str | None = None
    product_types: list[str] | None = None
    target_audience: str | None = None
    brand_personality_summary: str | None = None
    core_tone_attributes: str | None = None
    messaging_style: str | None = None
    vocabulary_to_use: str | None = None
    vocabulary_to_avoid: str | None = None
    ai_writing_guidelines: str | None = None
    content_goals: int = Field(default=3, ge=0, le=50)
    wordpress_url: str | None = None
    wordpress_username: str | None = None

    @field_validator("business_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("business_name must not be empty")
        return value


class BusinessProfileCreate(BusinessProfileBase):
    wordpress_password: str | None = None


class BusinessProfileUpdate(BaseModel):
    business_name: str | None = None
    owner_name: str | None = None
    location: str | None = None
    backstory: str | None = None
    product_types: list[str] | None = None
    target_audience: str | None = None
    brand_personality_summary: str | None = None
    core_tone_attributes: str | None = None
    messaging_style: str | None = None
    vocabulary_to_use: str | None = None
    vocabulary_to_avoid: str | None = None
    ai_writing_guidelines: str | None = None
    content_goals: int | None = Field(default=None, ge=0, le=50)
    wordpress_url: str | None = None
    wordpress_username: str | None = None
    wordpress_password: str | None = None

    @field_validator("business_name", "content_goals")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        # Omit a field to leave it unchanged; null would clear a required column.
        if value is None:
            raise ValueError("must not be null")
        return value


class BusinessProfileRead(BusinessProfileBase):
    id: int
    has_wordpress_credentials: bool = False
    created_at: datetime | None = None

    class Config:
        from_attributes = True

    @model_validator(mode="before")
    @classmethod
    def flag_credentials(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return data
        # ORM object: never echo the stored secret, only whether it is there.
        values = {name: getattr(data, name, None) for name in cls.model_fields if name != "has_wordpress_credentials"}
        values["has_wordpress_credentials"] = bool(
            getattr(data, "wordpress_url", None)
            and getattr(data, "wordpress_username", None)
            and getattr(data, "wordpress_password", None)
        )
        return values


# ── Content ────────────────────────────────────────────────────

class ContentRequest(BaseModel):
    content_type: ContentType
    primary_topic: str
    key_talking_points: str
    call_to_action: str | None = None

    @field_validator("primary_topic", "key_talking_points")
    @classmethod
    def require_text(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()


class GenerateContentRequest(BaseModel):
    business_id: int = Field(validation_alias=AliasChoices("business_id", "winery_id"))
    content_request: ContentRequest
    research_brief_id: int | None = None


class ContentItemCreate(BaseModel):
    business_id: int
    title: str
    body: str = ""
    content_type: ContentType
    status: str = "draft"
    scheduled_date: datetime | None = None
    research_brief_id: int | None = None


class ContentItemUpdate(BaseModel):
    title: str | None = None
    body: str | None = None
    content_type: ContentType | None = None
    status: str | None = None
    scheduled_date: datetime | None = None

    @field_validator("title", "body", "content_type", "status")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("must not be null")
        return value


class ContentItemRead(BaseModel):
    id: int
    business_id: int
    title: str
    body: str
    content_type: str
    status: str
    status_display: str | None = None
    scheduled_date: datetime | None = None
    research_brief_id: int | None = None
    generation_method: str
    external_id: str | None = None
    external_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True

    @model_validator(mode="after")
    def resolve_status_display(self) -> "ContentItemRead":
        self.status_display = status_display(self.status)
        return self


class BrandVoiceApplied(BaseModel):
    personality: str
    tone_attributes: str
    messaging_style: str
    vocabulary_used: str
    vocabulary_avoided: str
    writing_guidelines: str


class GeneratedContentData(BaseModel):
    content: ContentItemRead
    brand_voice_applied: BrandVoiceApplied
    content_request: ContentRequest
    word_count: int
    generation_method: str
    tokens_used: int | None = None


class GenerateContentResponse(BaseModel):
    success: bool = True
    data: GeneratedContentData
    message: str


class PublishRequest(BaseModel):
    status: str = Field(default="draft", pattern="^(draft|publish|pending|private)$")


class EngagementMetricRead(BaseModel):
    id: int
    content_item_id: int
    views: int
    clicks: int
    signups: int
    recorded_at: datetime | None = None

    class Config:
        from_attributes = True


# ── Briefs ─────────────────────────────────────────────────────

class BriefRead(BaseModel):
    id: int
    business_id: int
    suggested_theme: str
    key_points: list[str] | None = None
    local_event_name: str | None = None
    local_event_date: datetime | None = None
    local_event_location: str | None = None
    seasonal_context: str | None = None
    relevance_score: int | None = None
    source_url: str | None = None
    is_demo_data: bool = False
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class BriefDeleteResponse(BaseModel):
    success: bool = True
    brief_id: int
    deleted_content_count: int


# ── Event engine ───────────────────────────────────────────────

class DateRange(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ScanRequest(BaseModel):
    manual_trigger: bool = False
    business_id: int | None = Field(default=None, validation_alias=AliasChoices("business_id", "winery_id"))
    date_range: DateRange | None = None


class IngestPayload(BaseModel):
    # Shape is checked item by item; a missing or malformed list counts as zero events.
    events: Any = None


class IngestResponse(BaseModel):
    success: bool
    message: str
    events_processed: int
    data: list[dict[str, Any]] = Field(default_factory=list)


# ── Brand voice / WordPress ────────────────────────────────────

class BrandVoiceRequest(BaseModel):
    documentText: str = ""

    @field_validator("documentText")
    @classmethod
    def require_length(cls, value: str) -> str:
        if not value or len(value.strip()) < MIN_BRAND_DOCUMENT_CHARS:
            raise ValueError(
                f"Please provide a brand guide document with at least {MIN_BRAND_DOCUMENT_CHARS} characters"
            )
        return value


class BrandVoiceResponse(BaseModel):
    brand_personality_summary: str
    core_tone_attributes: str
    messaging_style: str
    vocabulary_to_use: str
    vocabulary_to_avoid: str
    ai_writing_guidelines: str
    analysis_method: str


class WordPressTestRequest(BaseModel):
    wordpress_url: str | None = None
    wordpress_username: str | None = None
    wordpress_password: str | None = None
