"""
Publishing layer for external sites.

Each adapter implements the `PublisherAdapter` interface:
    publish(item, profile, status) -> PublishResult

Results (including errors) are always returned explicitly; adapters do not raise
on upstream failure.
"""
from __future__ import annotations

import abc
import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from cellar.models import BusinessProfile, ContentItem
from cellar.settings import Settings

logger = logging.getLogger(__name__)


# Errors treated as retryable (network, rate limit, upstream hiccups)
RETRYABLE_INDICATORS = (
    "timeout", "timed out", "429", "too many requests",
    "502", "503", "504", "connection", "reset by peer",
    "temporary", "service unavailable", "rate limit",
    "network", "ssl", "eof",
)


def _is_retryable_error(error: str | None) -> bool:
    """Determine if an error message indicates a retryable failure."""
    if not error:
        return False
    lower = error.lower()
    return any(ind in lower for ind in RETRYABLE_INDICATORS)


# ── Credential sanitization ──────────────────────────────────

_SENSITIVE_PATTERNS = [
    (re.compile(r"Basic\s+[A-Za-z0-9+/=]+", re.IGNORECASE), "Basic ***"),
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_\.]+", re.IGNORECASE), "Bearer ***"),
    # user:password@host in URLs
    (re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@"), r"\1***@"),
    (re.compile(r"password[\"']?\s*[:=]\s*[\"']?[^\s\"',}]+", re.IGNORECASE), "password=***"),
]


def _sanitize(text: str | None, secrets: tuple[str | None, ...] = ()) -> str | None:
    """Strip credentials from error messages / response text."""
    if not text:
        return text
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def site_origin(url: str | None) -> str | None:
    """scheme://host[:port] of a site URL, or None when it is not an absolute http(s) URL."""
    if not url:
        return None
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


@dataclass
class PublishResult:
    """Unified result of a publish attempt."""
    success: bool
    external_id: str | None = None
    url: str | None = None
    platform: str | None = None
    error: str | None = None
    retryable: bool = False
    raw_response: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "external_id": self.external_id,
            "url": self.url,
            "platform": self.platform,
            "error": self.error,
            "retryable": self.retryable,
        }


@dataclass
class ConnectionResult:
    """Outcome of a credentials check."""
    success: bool
    message: str | None = None
    user: dict[str, Any] | None = None
    error: str | None = None
    details: dict[str, Any] | str | None = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "message": self.message, "user": self.user}
        return {"success": False, "error": self.error, "details": self.details}


# ── Abstract adapter ─────────────────────────────────────────

class PublisherAdapter(abc.ABC):
    """Base class for site-specific publishers."""

    platform: str = "unknown"

    @abc.abstractmethod
    async def publish(self, item: ContentItem, profile: BusinessProfile, status: str = "draft") -> PublishResult:
        """Post one content item and return the remote id + url."""
        ...

    def _log(self, item_id: int, msg: str, *args: Any) -> None:
        logger.info(f"[{self.platform}][item={item_id}] {msg}", *args)

    def _error(self, item_id: int, msg: str, *args: Any) -> None:
        logger.error(f"[{self.platform}][item={item_id}] {msg}", *args)


# ── WordPress ─────────────────────────────────────────────────

class WordPressPublisher(PublisherAdapter):
    """WordPress REST API with Basic auth (application passwords)."""

    platform = "WordPress"

    USERS_ME_PATH = "/wp-json/wp/v2/users/me"
    POSTS_PATH = "/wp-json/wp/v2/posts"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = settings.wordpress_timeout_sec
        self._transport = transport

    def _client(self, username: str, password: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            auth=httpx.BasicAuth(username, password),
            headers={"Accept": "application/json"},
            transport=self._transport,
        )

    async def test_connection(self, url: str | None, username: str | None, password: str | None) -> ConnectionResult:
        """Call the site's current-user endpoint. Never raises."""
        if not url or not username or not password:
            return ConnectionResult(success=False, error="Missing required WordPress credentials")
        origin = site_origin(url)
        if origin is None:
            return ConnectionResult(success=False, error="Invalid WordPress URL format")

        users_url = origin + self.USERS_ME_PATH
        try:
            async with self._client(username, password) as client:
                resp = await client.get(users_url)
        except httpx.HTTPError as exc:
            msg = _sanitize(f"Failed to reach WordPress site: {str(exc) or exc.__class__.__name__}", (password,))
            logger.warning("WordPress credential check %s failed: %s", origin, msg)
            return ConnectionResult(success=False, error=msg, details={"url": users_url})

        if not resp.is_success:
            body = _sanitize(resp.text[:500], (password,))
            logger.info("WordPress credential check %s rejected: HTTP %s", origin, resp.status_code)
            return ConnectionResult(
                success=False,
                error=f"WordPress authentication failed: {resp.status_code} {resp.reason_phrase}",
                details={"status": resp.status_code, "status_text": resp.reason_phrase, "body": body},
            )

        try:
            data = resp.json()
        except ValueError:
            return ConnectionResult(
                success=False,
                error="WordPress returned a non-JSON response",
                details={"status": resp.status_code, "body": resp.text[:500]},
            )
        if not isinstance(data, dict):
            data = {}
        user = {
            "id": data.get("id"),
            "name": data.get("name"),
            "roles": data.get("roles") or [],
        }
        return ConnectionResult(success=True, message="WordPress connection successful", user=user)

    async def publish(self, item: ContentItem, profile: BusinessProfile, status: str = "draft") -> PublishResult:
        password = profile.wordpress_password
        if not profile.wordpress_url or not profile.wordpress_username or not password:
            msg = "WordPress credentials are not configured for this business"
            self._error(item.id, msg)
            return PublishResult(success=False, platform=self.platform, error=msg, retryable=False)
        origin = site_origin(profile.wordpress_url)
        if origin is None:
            msg = "Invalid WordPress URL format"
            self._error(item.id, msg)
            return PublishResult(success=False, platform=self.platform, error=msg, retryable=False)

        payload = {"title": item.title, "content": item.body, "status": status}
        try:
            async with self._client(profile.wordpress_username, password) as client:
                self._log(item.id, "Posting to %s as %s", origin, status)
                resp = await client.post(origin + self.POSTS_PATH, json=payload)
        except httpx.HTTPError as exc:
            msg = _sanitize(f"WordPress publish error: {str(exc) or exc.__class__.__name__}", (password,))
            self._error(item.id, msg)
            return PublishResult(success=False, platform=self.platform, error=msg, retryable=_is_retryable_error(msg))

        if not resp.is_success:
            msg = _sanitize(f"WordPress publish failed: HTTP {resp.status_code} {resp.text[:300]}", (password,))
            self._error(item.id, msg)
            return PublishResult(success=False, platform=self.platform, error=msg, retryable=_is_retryable_error(msg))

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        post_id = data.get("id")
        link = data.get("link")
        self._log(item.id, "Published: %s", link)
        return PublishResult(
            success=True,
            external_id=str(post_id) if post_id is not None else None,
            url=link,
            platform=self.platform,
            raw_response={"id": post_id, "status": data.get("status"), "link": link},
        )


# ── Registry ──────────────────────────────────────────────────

_ADAPTERS: dict[str, type[PublisherAdapter]] = {
    "wordpress": WordPressPublisher,
}


def get_publisher(
    platform: str,
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PublisherAdapter | None:
    """Build the publisher for a platform (case-insensitive)."""
    adapter_cls = _ADAPTERS.get(platform.lower())
    if adapter_cls is None:
        return None
    return adapter_cls(settings, transport=transport)


def list_publishers() -> list[str]:
    return list(_ADAPTERS.keys())
