"""Brave web search, normalized to {title, description, url}.

Search is fail-open: any HTTP or network failure is logged and turned into an
empty result list so a search outage never blocks task execution.
"""
from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from taskpilot.config import settings
from taskpilot.models.task import SearchResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


def normalize_results(payload: Any) -> list[SearchResult]:
    """Map a Brave response body to SearchResults, defaulting missing fields to ""."""
    if not isinstance(payload, dict):
        return []
    web = payload.get("web") or {}
    raw_results = web.get("results") if isinstance(web, dict) else None
    if not isinstance(raw_results, list):
        return []
    return [SearchResult.from_dict(item) for item in raw_results if isinstance(item, dict)]


async def search(
    query: str,
    *,
    max_results: int | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> list[SearchResult]:
    """Execute a Brave web search. Never raises; returns [] on failure."""
    count = max_results or settings.search_result_count
    if not settings.brave_api_key:
        logger.warning("BRAVE_API_KEY is not configured; skipping search")
        return []

    params: dict[str, Any] = {"q": query, "count": count}
    headers = {
        "Accept": "application/json",
        "Accept-Encoding": "gzip",
        "X-Subscription-Token": settings.brave_api_key,
    }

    try:
        if http_client is not None:
            response = await http_client.get(BRAVE_SEARCH_URL, params=params, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=settings.search_timeout_seconds) as client:
                response = await client.get(BRAVE_SEARCH_URL, params=params, headers=headers)
        response.raise_for_status()
        payload = response.json()
    except Exception as e:
        logger.error(f"Search error for {query[:80]!r}: {e}")
        return []

    results = normalize_results(payload)
    logger.info(f"Search for {query[:80]!r} returned {len(results)} results")
    return results
