"""Port interfaces consumed by the pipeline."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from personaforge.core.models import InboundEvent, SearchResult


class ClockPort(Protocol):
    """Time source. Tests drive delivery timing with a virtual implementation."""

    def now(self) -> float:
        """Return current epoch seconds."""

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""


class TransportPort(Protocol):
    """Chat network session for one account."""

    @property
    def supports_read_receipts(self) -> bool:
        """Whether ``mark_read`` has a visible effect."""

    async def start(self) -> None:
        """Open the session; raises ``TransportClosed`` on failure."""

    async def stop(self) -> None:
        """Close the session."""

    def events(self) -> AsyncIterator[InboundEvent]:
        """Yield inbound events; raises ``TransportClosed`` when the session ends."""

    async def send_text(self, chat_id: str, text: str, *, reply_to_message_id: str | None = None) -> None:
        """Send one message, optionally as a reply."""

    async def set_typing(self, chat_id: str, enabled: bool) -> None:
        """Show or hide the typing indicator."""

    async def mark_read(self, chat_id: str, message_id: str) -> None:
        """Mark one inbound message as read."""


class CompletionPort(Protocol):
    """Single-shot text completion."""

    async def complete(self, prompt: str) -> str:
        """Return raw completion text for ``prompt``."""


class EmbeddingPort(Protocol):
    """Text embedding backend."""

    async def embed(self, text: str) -> list[float]:
        """Return one embedding vector."""


class SearchPort(Protocol):
    """Web search backend."""

    async def search(self, query: str) -> list[SearchResult]:
        """Return top results for ``query``."""


class MediaExtractorPort(Protocol):
    """Turns non-text content into text."""

    async def extract(self, event: InboundEvent) -> str | None:
        """Return extracted text for ``event`` or None."""


class TelemetryPort(Protocol):
    """Counter and event telemetry sink."""

    def incr(self, name: str, value: int = 1, labels: tuple[tuple[str, str], ...] = ()) -> None:
        """Increase named counter with optional labels."""


class OwnerNotifierPort(Protocol):
    """Administrative channel for operational alerts."""

    async def notify(self, text: str, *, key: str | None = None) -> None:
        """Send one alert; ``key`` deduplicates repeated alerts."""
