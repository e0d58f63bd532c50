"""FastAPI dependencies shared by the routers. Tests override these."""
from __future__ import annotations

import httpx
from fastapi import Depends

from .services.llm_provider import LLMProvider, build_llm_provider
from .settings import Settings, get_settings


def get_app_settings() -> Settings:
    return get_settings()


def get_llm(settings: Settings = Depends(get_app_settings)) -> LLMProvider | None:
    return build_llm_provider(settings)


def get_http_transport() -> httpx.AsyncBaseTransport | None:
    """Outbound transport for event sources and WordPress; None means the real network."""
    return None


SettingsDep = Depends(get_app_settings)
LLMDep = Depends(get_llm)
TransportDep = Depends(get_http_transport)
