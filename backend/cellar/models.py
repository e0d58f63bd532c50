from __future__ import annotations

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class ContentType(str, Enum):
    blog_post = "blog_post"
    social_media = "social_media"
    newsletter = "newsletter"
    press_release = "press_release"
    event_promotion = "event_promotion"
    product_announcement = "product_announcement"
    educational_content = "educational_content"


class ContentStatus(str, Enum):
    draft = "draft"
    ready_for_review = "ready_for_review"
    scheduled = "scheduled"
    published = "published"


class GenerationMethod(str, Enum):
    openai = "openai_gpt4"
    demo = "demo_template"
    manual = "manual"


UNKNOWN_STATUS = "unknown"


def status_display(value: str | None) -> str:
    """Map a stored status onto a renderable one; anything unrecognised is "unknown"."""
    try:
        return ContentStatus(value).value
    except ValueError:
        return UNKNOWN_STATUS


class BusinessProfile(Base):
    """One profile per account: identity, brand voice, cadence and publishing credentials."""
    __tablename__ = "business_profiles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    business_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    owner_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    location: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    backstory: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    product_types: Mapped[list | None] = mapped_column(sa.JSON(), nullable=True)
    target_audience: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)

    # Brand voice
    brand_personality_summary: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    core_tone_attributes: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    messaging_style: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    vocabulary_to_use: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    vocabulary_to_avoid: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    ai_writing_guidelines: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)

    content_goals: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="3", default=3)

    wordpress_url: Mapped[str | None] = mapped_column(sa.String(512), nullable=True)
    wordpress_username: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    wordpress_password: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    content_items: Mapped[list["ContentItem"]] = relationship(back_populates="business", passive_deletes=True)
    research_briefs: Mapped[list["ResearchBrief"]] = relationship(back_populates="business", passive_deletes=True)


class ResearchBrief(Base):
    """Business-specific note about a discovered event, used to seed content."""
    __tablename__ = "research_briefs"
    __table_args__ = (sa.UniqueConstraint("dedup_key", name="uq_research_briefs_dedup_key"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    business_id: Mapped[int] = mapped_column(
        sa.ForeignKey("business_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    suggested_theme: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    key_points: Mapped[list | None] = mapped_column(sa.JSON(), nullable=True)
    local_event_name: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    local_event_date: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    local_event_location: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    seasonal_context: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    relevance_score: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    source_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    dedup_key: Mapped[str] = mapped_column(sa.String(40), nullable=False)
    is_demo_data: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.false(), default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    business: Mapped[BusinessProfile] = relationship(back_populates="research_briefs")
    content_items: Mapped[list["ContentItem"]] = relationship(back_populates="research_brief", passive_deletes=True)


class ContentItem(Base):
    """One piece of publishable marketing content."""
    __tablename__ = "content_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    business_id: Mapped[int] = mapped_column(
        sa.ForeignKey("business_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    body: Mapped[str] = mapped_column(sa.Text(), nullable=False, default="")
    content_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    # Free string: rows written by other clients may carry statuses outside ContentStatus.
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default=ContentStatus.draft.value)
    scheduled_date: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True, index=True)
    research_brief_id: Mapped[int | None] = mapped_column(
        sa.ForeignKey("research_briefs.id", ondelete="SET NULL"), nullable=True, index=True
    )
    generation_method: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default=GenerationMethod.manual.value)
    external_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    external_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    business: Mapped[BusinessProfile] = relationship(back_populates="content_items")
    research_brief: Mapped["ResearchBrief | None"] = relationship(back_populates="content_items")


class RawEvent(Base):
    """Externally pushed event text, shared by every business's classification pass."""
    __tablename__ = "raw_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    source_url: Mapped[str] = mapped_column(sa.Text(), nullable=False, index=True)
    source_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    raw_content: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    content_length: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=0)
    is_processed: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default=sa.false(), default=False, index=True
    )
    error_message: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    scrape_timestamp: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True
    )


class EngagementMetric(Base):
    """View/click/signup counters fed by an external analytics job."""
    __tablename__ = "engagement_metrics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # No FK: metrics outlive the content item they describe.
    content_item_id: Mapped[int] = mapped_column(sa.Integer(), nullable=False, index=True)
    business_id: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True, index=True)
    views: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=0)
    clicks: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=0)
    signups: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=0)
    recorded_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
