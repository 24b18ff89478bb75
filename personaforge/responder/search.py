"""Decide whether a turn needs a web search and render results."""

from __future__ import annotations

import re
from typing import Literal

from loguru import logger

from personaforge.core.models import SearchResult
from personaforge.core.ports import CompletionPort
from personaforge.utils.helpers import compact_text

_FRESHNESS = re.compile(
    r"\b(today|tonight|tomorrow|yesterday|news|latest|currently|right now|weather|forecast|"
    r"price|exchange rate|score|who won|released|20\d\d)\b"
    r"|(сегодня|завтра|вчера|новост|погод|курс\b|цена|цены|сейчас|последн)",
    re.IGNORECASE,
)

_DECIDER_PROMPT = (
    "Decide whether answering the chat message below needs fresh information from the internet "
    "(news, weather, prices, recent events, facts that change over time).\n"
    "Reply with exactly one line: 'SEARCH: <short search query>' or 'NO'.\n\n"
    "Message: {message}\n"
)

_SEARCH_LINE = re.compile(r"^\s*SEARCH\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)


def parse_decision(raw: str) -> str | None:
    """Extract the query from a ``SEARCH: <query>`` answer; anything else means no search."""
    match = _SEARCH_LINE.search(raw or "")
    if match is None:
        return None
    query = match.group(1).strip().strip("\"'")
    return query or None


class SearchDecider:
    """Pick a search query for a message, or None."""

    def __init__(
        self,
        mode: Literal["off", "heuristic", "llm"],
        *,
        completion: CompletionPort | None = None,
        min_chars: int = 8,
    ) -> None:
        self._mode = mode
        self._completion = completion
        self._min_chars = min_chars

    @property
    def enabled(self) -> bool:
        return self._mode != "off"

    async def decide(self, text: str) -> str | None:
        message = " ".join((text or "").split())
        if self._mode == "off" or len(message) < self._min_chars:
            return None
        if self._mode == "heuristic":
            return compact_text(message, 200) if _FRESHNESS.search(message) else None
        if self._completion is None:
            return None
        try:
            raw = await self._completion.complete(_DECIDER_PROMPT.format(message=compact_text(message, 500)))
        except Exception as e:
            logger.info("search_decision_failed error={}", e)
            return None
        return parse_decision(raw)


def render_search_results(query: str, results: list[SearchResult], max_chars: int = 1500) -> str:
    """Render results as a labeled prompt block."""
    if not results:
        return ""
    lines = [
        "[Web Search Results]",
        f"You just looked up '{query}'. Use it casually, like something you just googled.",
    ]
    for i, item in enumerate(results, 1):
        line = f"{i}. {item.title}: {item.snippet}"
        if item.url:
            line += f" ({item.url})"
        if len("\n".join(lines + [line])) > max_chars:
            break
        lines.append(line)
    return "\n".join(lines)
