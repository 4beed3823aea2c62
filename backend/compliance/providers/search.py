"""HTTP search provider: query → ranked sources plus a short summary."""

from __future__ import annotations

import logging

import httpx

from compliance.providers.base import SearchFocus, SearchProvider, SearchResult, SearchSource
from compliance.providers.http import post_json

logger = logging.getLogger(__name__)

_SERVICE = "search"


class HttpSearchProvider(SearchProvider):
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "HttpSearchProvider":
        headers = {}
        if settings.search_api_key:
            headers["Authorization"] = f"Bearer {settings.search_api_key}"
        client = httpx.AsyncClient(
            base_url=settings.search_api_url,
            timeout=settings.search_timeout_seconds,
            headers=headers,
        )
        return cls(client)

    async def search(self, query: str, max_results: int = 10, focus: SearchFocus = "all") -> SearchResult:
        data = await post_json(
            self._client,
            _SERVICE,
            "/search",
            {"query": query, "max_results": max_results, "focus": focus},
        )

        sources = []
        for item in data.get("sources") or data.get("results") or []:
            url = item.get("url") or item.get("link")
            if not url:
                continue
            sources.append(
                SearchSource(
                    title=item.get("title") or url,
                    url=url,
                    snippet=item.get("snippet") or item.get("description") or "",
                    is_government_source=bool(
                        item.get("is_government_source", item.get("isGovernmentSource", False))
                    ),
                )
            )

        logger.info("Search | query=%r sources=%d focus=%s", query[:80], len(sources), focus)
        return SearchResult(sources=sources[:max_results], summary=data.get("summary") or "")

    async def aclose(self) -> None:
        await self._client.aclose()
