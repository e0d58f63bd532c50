"""
LLM provider interface used by the classifier, the content generator and
the brand-voice analyzer.

A provider exists only when an API key is configured; callers receive
``None`` otherwise and take their explicitly-labelled demo path.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import openai
from openai import AsyncOpenAI

from cellar.settings import Settings

logger = logging.getLogger(__name__)

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


class LLMError(Exception):
    """Raised when the upstream completion call fails or returns garbage."""


class Completion:
    """Result of a single chat completion."""

    def __init__(
        self,
        text: str,
        *,
        model: str = "stub",
        tokens_used: int = 0,
        raw: dict | None = None,
    ):
        self.text = text
        self.model = model
        self.tokens_used = tokens_used
        self.raw = raw

    def json(self) -> dict[str, Any]:
        return parse_json_object(self.text)


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a JSON object out of model output, tolerating a markdown fence."""
    if not text or not text.strip():
        raise LLMError("Empty response from LLM")
    candidate = text.strip()
    match = _JSON_FENCE_RE.search(candidate)
    if match:
        candidate = match.group(1).strip()
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise LLMError(f"Invalid JSON response from LLM: {exc}") from exc
    if not isinstance(data, dict):
        raise LLMError("LLM response is not a JSON object")
    return data


class LLMProvider(ABC):
    """Abstract LLM provider. Implement `complete` to plug in a model."""

    name: str = "unknown"

    @abstractmethod
    async def complete(
        self,
        *,
        system: str,
        user: str,
        json_mode: bool = False,
        max_tokens: int = 1500,
        temperature: float = 0.7,
    ) -> Completion:
        ...


class OpenAIProvider(LLMProvider):
    """Chat completions against the OpenAI API."""

    name = "openai"

    def __init__(self, api_key: str, *, model: str = "gpt-4", timeout: float = 120.0, client: AsyncOpenAI | None = None):
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def complete(
        self,
        *,
        system: str,
        user: str,
        json_mode: bool = False,
        max_tokens: int = 1500,
        temperature: float = 0.7,
    ) -> Completion:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.APIStatusError as exc:
            raise LLMError(f"OpenAI API error ({exc.status_code}): {exc.message}") from exc
        except openai.OpenAIError as exc:
            raise LLMError(f"OpenAI request failed: {exc}") from exc

        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise LLMError("No content generated by OpenAI")
        tokens = response.usage.total_tokens if response.usage else 0
        logger.debug("OpenAI completion model=%s tokens=%s", self.model, tokens)
        return Completion(text, model=self.model, tokens_used=tokens)


def build_llm_provider(settings: Settings) -> LLMProvider | None:
    """Return a provider for the configured key, or None when no key is set."""
    if not settings.openai_api_key:
        return None
    return OpenAIProvider(settings.openai_api_key, model=settings.openai_model, timeout=settings.llm_timeout_sec)
