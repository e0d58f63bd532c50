from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cellar.db import get_session
from cellar.dependencies import LLMDep, SettingsDep, TransportDep
from cellar.models import BusinessProfile, ContentItem, ContentStatus, EngagementMetric, GenerationMethod, ResearchBrief
from cellar.schemas import (
    ContentItemCreate,
    ContentItemRead,
    ContentItemUpdate,
    EngagementMetricRead,
    GenerateContentRequest,
    GenerateContentResponse,
    PublishRequest,
)
from cellar.services.content_generator import ContentGenerator
from cellar.services.llm_provider import LLMProvider
from cellar.services.publisher_adapter import get_publisher
from cellar.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["content"])
SessionDep = Depends(get_session)


def generation_message(method: str) -> str:
    if method == GenerationMethod.demo.value:
        return "Content generated from a demo template (no LLM API key configured)"
    return "Content generated successfully with AI"


async def _get_item(session: AsyncSession, content_id: int) -> ContentItem:
    item = await session.get(ContentItem, content_id)
    if not item:
        raise HTTPException(status_code=404, detail="Content item not found")
    return item


@router.post("/generate-content", response_model=GenerateContentResponse)
async def generate_content(
    data: GenerateContentRequest,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    llm: LLMProvider | None = LLMDep,
):
    profile = await session.get(BusinessProfile, data.business_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Business profile not found")

    brief = None
    if data.research_brief_id is not None:
        brief = await session.get(ResearchBrief, data.research_brief_id)
        if not brief:
            raise HTTPException(status_code=404, detail="Research brief not found")
        if brief.business_id != profile.id:
            raise HTTPException(status_code=400, detail="Research brief belongs to another business")

    generator = ContentGenerator(settings, llm)
    outcome = await generator.generate(session, profile, data.content_request, brief=brief)
    return GenerateContentResponse(
        success=True,
        data=outcome.as_data(data.content_request),
        message=generation_message(outcome.generation_method),
    )


# ── CRUD ───────────────────────────────────────────────────────

@router.get("/api/content", response_model=list[ContentItemRead])
async def list_content(
    business_id: int | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = SessionDep,
):
    stmt = select(ContentItem).order_by(ContentItem.created_at.desc(), ContentItem.id.desc()).limit(limit)
    if business_id is not None:
        stmt = stmt.where(ContentItem.business_id == business_id)
    if status_filter:
        stmt = stmt.where(ContentItem.status == status_filter)
    res = await session.execute(stmt)
    return res.scalars().all()


@router.post("/api/content", response_model=ContentItemRead, status_code=status.HTTP_201_CREATED)
async def create_content(data: ContentItemCreate, session: AsyncSession = SessionDep):
    if not await session.get(BusinessProfile, data.business_id):
        raise HTTPException(status_code=404, detail="Business profile not found")
    if data.research_brief_id is not None and not await session.get(ResearchBrief, data.research_brief_id):
        raise HTTPException(status_code=404, detail="Research brief not found")
    item = ContentItem(
        business_id=data.business_id,
        title=data.title,
        body=data.body,
        content_type=data.content_type.value,
        status=data.status,
        scheduled_date=data.scheduled_date,
        research_brief_id=data.research_brief_id,
        generation_method=GenerationMethod.manual.value,
    )
    session.add(item)
    await session.commit()
    await session.refresh(item)
    return item


@router.get("/api/content/{content_id}", response_model=ContentItemRead)
async def get_content(content_id: int, session: AsyncSession = SessionDep):
    return await _get_item(session, content_id)


@router.patch("/api/content/{content_id}", response_model=ContentItemRead)
async def update_content(content_id: int, data: ContentItemUpdate, session: AsyncSession = SessionDep):
    item = await _get_item(session, content_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        if field == "content_type" and value is not None:
            value = value.value
        setattr(item, field, value)
    session.add(item)
    await session.commit()
    await session.refresh(item)
    return item


@router.delete("/api/content/{content_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_content(content_id: int, session: AsyncSession = SessionDep):
    # Engagement metrics are left in place.
    item = await _get_item(session, content_id)
    await session.delete(item)
    await session.commit()
    return None


@router.get("/api/content/{content_id}/metrics", response_model=list[EngagementMetricRead])
async def content_metrics(content_id: int, session: AsyncSession = SessionDep):
    res = await session.execute(
        select(EngagementMetric)
        .where(EngagementMetric.content_item_id == content_id)
        .order_by(EngagementMetric.recorded_at.desc())
    )
    return res.scalars().all()


# ── Publishing ─────────────────────────────────────────────────

@router.post("/api/content/{content_id}/publish")
async def publish_content(
    content_id: int,
    data: PublishRequest | None = Body(default=None),
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    transport: httpx.AsyncBaseTransport | None = TransportDep,
):
    item = await _get_item(session, content_id)
    profile = await session.get(BusinessProfile, item.business_id)
    if not profile or not (profile.wordpress_url and profile.wordpress_username and profile.wordpress_password):
        raise HTTPException(status_code=400, detail="WordPress credentials are not configured for this business")

    wp_status = (data or PublishRequest()).status
    publisher = get_publisher("wordpress", settings, transport=transport)
    result = await publisher.publish(item, profile, status=wp_status)
    if not result.success:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=result.to_dict())

    # A remote draft leaves the local status alone.
    if wp_status == "publish":
        item.status = ContentStatus.published.value
    item.external_id = result.external_id
    item.external_url = result.url
    session.add(item)
    await session.commit()
    await session.refresh(item)
    return {**result.to_dict(), "content": ContentItemRead.model_validate(item).model_dump(mode="json")}
