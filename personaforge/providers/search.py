"""Web search via the Tavily Search API."""

from __future__ import annotations

import os
from typing import Any

import httpx

from personaforge.core.models import SearchResult

_TAVILY_SEARCH_URL = "https://api.tavily.com/search"


def _tavily_auth_headers(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}


class TavilySearch:
    """Search the web using Tavily Search API."""

    def __init__(self, api_key: str | None = None, *, max_results: int = 3, timeout_seconds: float = 15.0):
        self.api_key = api_key or os.environ.get("TAVILY_API_KEY", "")
        self.max_results = min(max(int(max_results), 1), 10)
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: str) -> list[SearchResult]:
        if not self.api_key:
            raise RuntimeError("TAVILY_API_KEY not configured")

        payload: dict[str, Any] = {
            "query": query,
            "search_depth": "basic",
            "max_results": self.max_results,
            "include_answer": False,
        }
        async with httpx.AsyncClient() as client:
            r = await client.post(
                _TAVILY_SEARCH_URL,
                json=payload,
                headers=_tavily_auth_headers(self.api_key),
                timeout=self.timeout_seconds,
            )
            r.raise_for_status()

        data = r.json()
        results: list[SearchResult] = []
        for item in data.get("results", [])[: self.max_results]:
            results.append(
                SearchResult(
                    title=str(item.get("title") or "").strip(),
                    snippet=" ".join(str(item.get("content") or "").split())[:300],
                    url=str(item.get("url") or "").strip(),
                )
            )
        return results
