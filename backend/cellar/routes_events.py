from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cellar.db import get_session
from cellar.dependencies import LLMDep, SettingsDep, TransportDep
from cellar.models import BusinessProfile
from cellar.schemas import IngestPayload, IngestResponse, ScanRequest
from cellar.services.ingestion import ingest_raw_events
from cellar.services.llm_provider import LLMProvider
from cellar.services.pipeline import EventPipeline
from cellar.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])
SessionDep = Depends(get_session)


@router.post("/ingest-raw-events", response_model=IngestResponse)
async def ingest_events(
    payload: IngestPayload | None = Body(default=None),
    session: AsyncSession = SessionDep,
):
    """Store pushed events for a later classification pass. Malformed input stores nothing."""
    rows, received = await ingest_raw_events(session, payload.events if payload else None)
    if not rows:
        return IngestResponse(
            success=True,
            message="No valid events to process",
            events_processed=0,
        )
    return IngestResponse(
        success=True,
        message=f"Successfully ingested {len(rows)} of {received} events",
        events_processed=len(rows),
        data=[
            {"id": row.id, "source_name": row.source_name, "content_length": row.content_length}
            for row in rows
        ],
    )


@router.post("/scan-local-events")
async def scan_local_events(
    payload: ScanRequest | None = Body(default=None),
    session: AsyncSession = SessionDep,
    settings: Settings = SettingsDep,
    llm: LLMProvider | None = LLMDep,
    transport: httpx.AsyncBaseTransport | None = TransportDep,
):
    payload = payload or ScanRequest()
    if payload.business_id is not None and await session.get(BusinessProfile, payload.business_id) is None:
        raise HTTPException(status_code=404, detail="Business profile not found")

    date_range = None
    if payload.date_range is not None:
        date_range = (payload.date_range.start_date, payload.date_range.end_date)

    logger.info(
        "Event scan requested (manual=%s, business_id=%s, date_range=%s)",
        payload.manual_trigger, payload.business_id, date_range,
    )
    pipeline = EventPipeline(settings, llm, transport=transport)
    result = await pipeline.run(session, date_range=date_range, business_id=payload.business_id)
    if not result.success:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=result.to_dict())
    return result.to_dict()


@router.get("/api/scheduler/status")
async def scheduler_status(request: Request):
    service = getattr(request.app.state, "scheduler", None)
    if service is None:
        return {"running": False, "jobs": []}
    return {"running": service.is_running(), "jobs": service.get_jobs()}
