from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .db import dispose_engine, get_session_factory, init_models
from .routes_briefs import router as briefs_router
from .routes_content import router as content_router
from .routes_events import router as events_router
from .routes_profiles import router as profiles_router
from .services.llm_provider import LLMError
from .services.scheduler import SchedulerService
from .settings import ConfigurationError, get_settings

logger = logging.getLogger("app")

app = FastAPI(title="cellar")
settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _validation_message(errors: list[dict]) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = str(err.get("msg", "invalid value")).removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": _validation_message(errors), "details": jsonable_encoder(errors)},
    )


@app.exception_handler(LLMError)
async def llm_exception_handler(request: Request, exc: LLMError):
    logger.error("LLM call failed on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"success": False, "error": "LLM request failed", "details": str(exc)},
    )


@app.exception_handler(ConfigurationError)
async def configuration_exception_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": str(exc)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(events_router)
app.include_router(content_router)
app.include_router(profiles_router)
app.include_router(briefs_router)


@app.on_event("startup")
async def startup_event():
    """Fail fast without DATABASE_URL, create tables, start the weekly scan."""
    await init_models()
    scheduler = SchedulerService(settings, get_session_factory())
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info("Startup complete (discovery_mode=%s, llm=%s)", settings.discovery_mode, settings.llm_enabled)


@app.on_event("shutdown")
async def shutdown_event():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()
    await dispose_engine()
    logger.info("Shutdown complete")
