from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cellar.db import get_session
from cellar.dependencies import LLMDep, SettingsDep
from cellar.models import BusinessProfile, ResearchBrief
from cellar.routes_content import generation_message
from cellar.schemas import BriefDeleteResponse, BriefRead, ContentRequest, GenerateContentResponse
from cellar.services.briefs import delete_brief
from cellar.services.content_generator import ContentGenerator, request_from_brief
from cellar.services.llm_provider import LLMProvider
from cellar.settings import Settings

router = APIRouter(prefix="/api", tags=["briefs"])
SessionDep = Depends(get_session)


@router.get("/briefs", response_model=list[BriefRead])
async def list_briefs(
    business_id: int | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = SessionDep,
):
    stmt = select(ResearchBrief).order_by(ResearchBrief.created_at.desc(), ResearchBrief.id.desc()).limit(limit)
    if business_id is not None:
        stmt = stmt.where(ResearchBrief.business_id == business_id)
    res = await session.execute(stmt)
    return res.scalars().all()


@router.get("/briefs/{brief_id}", response_model=BriefRead)
async def get_brief(brief_id: int, session: AsyncSession = SessionDep):
    brief = await session.get(ResearchBrief, brief_id)
    if not brief:
        raise HTTPException(status_code=404, detail="Research brief not found")
    return brief


@router.delete("/briefs/{brief_id}", response_model=BriefDeleteResponse)
async def remove_brief(brief_id: int, session: AsyncSession = SessionDep):
    """Delete a brief together with the content items generated from it."""
    deleted = await delete_brief(session, brief_id, cascade=True)
    if deleted is None:
        raise HTTPException(status_code=404, detail="Research brief not found")
    return BriefDeleteResponse(brief_id=brief_id, deleted_content_count=deleted)


@router.post("/briefs/{brief_id}/generate", response_model=GenerateContentResponse)
async def generate_from_brief(
    brief_id: int,
    content_request: ContentRequest | None = Body(default=None),
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    llm: LLMProvider | None = LLMDep,
):
    """Create content from a brief; without a body the request is derived from the brief."""
    brief = await session.get(ResearchBrief, brief_id)
    if not brief:
        raise HTTPException(status_code=404, detail="Research brief not found")
    profile = await session.get(BusinessProfile, brief.business_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Business profile not found")

    request = content_request or request_from_brief(brief, profile)
    outcome = await ContentGenerator(settings, llm).generate(session, profile, request, brief=brief)
    return GenerateContentResponse(
        success=True,
        data=outcome.as_data(request),
        message=generation_message(outcome.generation_method),
    )
