"""Apify web-scraper runs used by the scrape-service discovery mode."""
from __future__ import annotations

from typing import Any

import httpx
from fastapi import HTTPException, status

APIFY_RUN_URL = "https://api.apify.com/v2/acts/{actor_id}/run-sync-get-dataset-items"


def actor_path_id(actor_id: str) -> str:
    """`apify/web-scraper` -> `apify~web-scraper` (the form the REST path wants)."""
    return actor_id if "~" in actor_id else actor_id.replace("/", "~", 1)


def web_scraper_input(start_urls: list[str], page_function: str) -> dict[str, Any]:
    """Input for a single-page-per-URL crawl: no link following, proxy on."""
    return {
        "startUrls": [{"url": url} for url in start_urls],
        "pageFunction": page_function,
        "proxyConfiguration": {"useApifyProxy": True},
        "maxRequestsPerCrawl": len(start_urls),
        "maxCrawlingDepth": 0,
    }


async def scrape_pages(
    token: str,
    actor_id: str,
    start_urls: list[str],
    page_function: str,
    *,
    timeout_s: float = 300,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, dict]:
    """Run the actor synchronously; returns dataset items keyed by page URL (no trailing slash).

    Raises HTTPException 504 on timeout and 502 on any other upstream failure.
    """
    path_id = actor_path_id(actor_id)
    url = APIFY_RUN_URL.format(actor_id=path_id)

    try:
        async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
            resp = await client.post(url, params={"token": token}, json=web_scraper_input(start_urls, page_function))
    except httpx.TimeoutException as exc:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail={"error": "scrape run timed out", "actor": path_id},
        ) from exc
    except httpx.HTTPError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "scrape request failed", "actor": path_id, "reason": str(exc)},
        ) from exc

    if resp.status_code >= 400:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "scrape actor failed", "status": resp.status_code, "body": resp.text[:400]},
        )

    try:
        data = resp.json()
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "scrape dataset is not JSON", "body": resp.text[:400]},
        ) from exc

    items = data if isinstance(data, list) else (data.get("items") or [] if isinstance(data, dict) else [])
    pages: dict[str, dict] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        page_url = item.get("source_url") or item.get("url")
        if page_url:
            pages[page_url.rstrip("/")] = item
    return pages
