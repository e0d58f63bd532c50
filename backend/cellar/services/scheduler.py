"""
Scheduler Service

Runs the event pipeline on a weekly cron (default Monday 09:00 local time).

Single-leader election via Postgres advisory locks:
- Only the instance that acquires the lock executes the tick
- Other instances silently skip
- Controlled by SCHEDULER_ENABLED (default: false)
"""
from __future__ import annotations

import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession, async_sessionmaker

from cellar.services.llm_provider import LLMError, build_llm_provider
from cellar.services.pipeline import EventPipeline
from cellar.settings import Settings

logger = logging.getLogger("scheduler")

# Advisory lock key (arbitrary int64, unique per job type)
LOCK_EVENT_SCAN = 910_001

EVENT_SCAN_JOB_ID = "weekly_event_scan"


class SchedulerService:
    """Weekly event scan.

    On PostgreSQL each tick takes pg_try_advisory_lock so that only one
    backend instance runs the pipeline; other dialects run unconditionally.
    """

    def __init__(self, settings: Settings, session_factory: async_sessionmaker[AsyncSession]):
        self.settings = settings
        self._session_factory = session_factory
        self.scheduler = AsyncIOScheduler(timezone=settings.scan_schedule_timezone)
        self._running = False

    async def _try_advisory_lock(self, conn: AsyncConnection, lock_key: int) -> bool:
        """Non-blocking session-level lock; True when this instance is leader for the tick."""
        if conn.dialect.name != "postgresql":
            return True
        result = await conn.execute(text(f"SELECT pg_try_advisory_lock({lock_key})"))
        return bool(result.scalar())

    async def _release_advisory_lock(self, conn: AsyncConnection, lock_key: int) -> None:
        if conn.dialect.name != "postgresql":
            return
        await conn.execute(text(f"SELECT pg_advisory_unlock({lock_key})"))

    def start(self) -> None:
        if not self.settings.scheduler_enabled:
            logger.info("Scheduler DISABLED by SCHEDULER_ENABLED=false, skipping start")
            return
        if self._running:
            return

        self.scheduler.add_job(
            self.run_event_scan,
            CronTrigger(
                day_of_week=self.settings.scan_schedule_day_of_week,
                hour=self.settings.scan_schedule_hour,
                minute=0,
                timezone=self.settings.scan_schedule_timezone,
            ),
            id=EVENT_SCAN_JOB_ID,
            name="Weekly local event scan",
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info(
            "Scheduler started: event scan every %s at %02d:00 %s",
            self.settings.scan_schedule_day_of_week,
            self.settings.scan_schedule_hour,
            self.settings.scan_schedule_timezone,
        )

    def stop(self) -> None:
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    def get_jobs(self) -> list[dict[str, Any]]:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return jobs

    async def run_event_scan(self) -> dict[str, Any] | None:
        """One scheduled pipeline run across every business."""
        # Lock and unlock share this session's connection; the session never commits.
        async with self._session_factory() as lock_session:
            lock_conn = await lock_session.connection()
            acquired = await self._try_advisory_lock(lock_conn, LOCK_EVENT_SCAN)
            if not acquired:
                logger.debug("[event_scan] Advisory lock not acquired, another instance is leader; skipping tick")
                return None
            try:
                logger.info("[event_scan] LEADER: running weekly event scan")
                pipeline = EventPipeline(self.settings, build_llm_provider(self.settings))
                async with self._session_factory() as session:
                    try:
                        result = await pipeline.run(session)
                    except LLMError as exc:
                        logger.error("[event_scan] Classification failed: %s", exc)
                        return {"success": False, "error": str(exc)}
                logger.info(
                    "[event_scan] Completed: success=%s events=%s briefs=%s content=%s",
                    result.success,
                    result.events_final,
                    result.briefs_created,
                    result.content_generated,
                )
                return result.to_dict()
            finally:
                await self._release_advisory_lock(lock_conn, LOCK_EVENT_SCAN)
