from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cellar.db import get_session
from cellar.dependencies import LLMDep, SettingsDep, TransportDep
from cellar.models import BusinessProfile
from cellar.schemas import (
    BrandVoiceRequest,
    BrandVoiceResponse,
    BusinessProfileCreate,
    BusinessProfileRead,
    BusinessProfileUpdate,
    WordPressTestRequest,
)
from cellar.services.brand_voice import analyze_brand_voice
from cellar.services.content_plan import ContentPlanner
from cellar.services.llm_provider import LLMProvider
from cellar.services.publisher_adapter import WordPressPublisher
from cellar.settings import Settings

router = APIRouter(tags=["profiles"])
SessionDep = Depends(get_session)


@router.post("/api/profiles", response_model=BusinessProfileRead, status_code=status.HTTP_201_CREATED)
async def create_profile(data: BusinessProfileCreate, session: AsyncSession = SessionDep):
    profile = BusinessProfile(**data.model_dump())
    session.add(profile)
    await session.commit()
    await session.refresh(profile)
    return profile


@router.get("/api/profiles", response_model=list[BusinessProfileRead])
async def list_profiles(session: AsyncSession = SessionDep):
    res = await session.execute(select(BusinessProfile).order_by(BusinessProfile.id))
    return res.scalars().all()


@router.get("/api/profiles/{profile_id}", response_model=BusinessProfileRead)
async def get_profile(profile_id: int, session: AsyncSession = SessionDep):
    profile = await session.get(BusinessProfile, profile_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Business profile not found")
    return profile


@router.patch("/api/profiles/{profile_id}", response_model=BusinessProfileRead)
async def update_profile(profile_id: int, data: BusinessProfileUpdate, session: AsyncSession = SessionDep):
    profile = await session.get(BusinessProfile, profile_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Business profile not found")
    for field, value in data.model_dump(exclude_unset=True).items():
        if field == "business_name" and not (value or "").strip():
            raise HTTPException(status_code=400, detail="business_name must not be empty")
        setattr(profile, field, value)
    session.add(profile)
    await session.commit()
    await session.refresh(profile)
    return profile


@router.post("/api/profiles/{profile_id}/content-plan")
async def create_content_plan(
    profile_id: int,
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    llm: LLMProvider | None = LLMDep,
):
    """Schedule `content_goals` drafts two days apart, rotating type and theme."""
    profile = await session.get(BusinessProfile, profile_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Business profile not found")
    plan = await ContentPlanner(settings, llm).plan(session, profile)
    return {"success": True, "data": plan.to_dict(), "message": plan.message}


@router.post("/analyze-brand-voice", response_model=BrandVoiceResponse)
async def analyze_brand_voice_route(data: BrandVoiceRequest, llm: LLMProvider | None = LLMDep):
    analysis = await analyze_brand_voice(llm, data.documentText)
    return BrandVoiceResponse(**analysis.to_dict())


@router.post("/test-wordpress")
async def test_wordpress(
    data: WordPressTestRequest,
    settings: Settings = SettingsDep,
    transport: httpx.AsyncBaseTransport | None = TransportDep,
):
    """Check WordPress credentials. Upstream rejection is reported in the body, not raised."""
    if not (data.wordpress_url and data.wordpress_username and data.wordpress_password):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "Missing required WordPress credentials"},
        )

    publisher = WordPressPublisher(settings, transport=transport)
    result = await publisher.test_connection(data.wordpress_url, data.wordpress_username, data.wordpress_password)
    if not result.success and result.error == "Invalid WordPress URL format":
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=result.to_dict())
    return result.to_dict()
