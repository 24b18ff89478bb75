"""Semantic memory service: retrieve, store and summarize per chat."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from personaforge.core.errors import MemoryDegraded
from personaforge.core.models import MemoryHit, MemoryRecord
from personaforge.core.ports import ClockPort, CompletionPort, EmbeddingPort, TelemetryPort
from personaforge.memory.scoring import rank
from personaforge.memory.store import MemoryStore

if TYPE_CHECKING:
    from personaforge.config.schema import MemoryConfig

_SUMMARY_PROMPT = (
    "Summarize the following chat messages into a short factual digest "
    "(names, preferences, plans, facts worth remembering). "
    "Write at most 5 sentences in the language of the messages.\n\n"
    "{messages}\n\nDigest:"
)


class MemoryService:
    """Best-effort memory around one store.

    Retrieval degrades to an empty list and store failures are swallowed;
    neither ever fails the enclosing turn.
    """

    def __init__(
        self,
        *,
        config: "MemoryConfig",
        store: MemoryStore,
        embedder: EmbeddingPort,
        clock: ClockPort,
        summarizer: CompletionPort | None = None,
        telemetry: TelemetryPort | None = None,
    ) -> None:
        self.config = config
        self._store = store
        self._embedder = embedder
        self._clock = clock
        self._summarizer = summarizer
        self._telemetry = telemetry

    async def _embed(self, text: str) -> list[float]:
        try:
            vector = await self._embedder.embed(text)
        except Exception as e:
            raise MemoryDegraded(f"embedding failed: {e.__class__.__name__}: {e}") from e
        if not vector:
            raise MemoryDegraded("embedding service returned an empty vector")
        return [float(v) for v in vector]

    def _degraded(self, op: str, account_id: str, chat_id: str, error: Exception) -> None:
        logger.warning("memory_degraded op={} account={} chat={} error={}", op, account_id, chat_id, error)
        if self._telemetry is not None:
            self._telemetry.incr("memory_degraded", labels=(("op", op),))

    async def retrieve(self, account_id: str, chat_id: str, query: str, k: int | None = None) -> list[MemoryHit]:
        limit = self.config.top_k if k is None else int(k)
        if not self.config.enabled or limit <= 0 or not query.strip():
            return []
        try:
            vector = await self._embed(query)
            records = self._store.list_records(account_id, chat_id)
        except Exception as e:
            self._degraded("retrieve", account_id, chat_id, e)
            return []
        return rank(
            vector,
            records,
            now=self._clock.now(),
            decay_rate=self.config.decay_rate,
            k=limit,
        )

    async def store(self, account_id: str, chat_id: str, text: str) -> MemoryRecord | None:
        """Embed and persist ``text`` unless it is shorter than the minimum length."""
        compact = " ".join(text.split())
        if not self.config.enabled or len(compact) < self.config.min_length:
            return None
        try:
            vector = await self._embed(compact)
            return self._store.add(
                account_id=account_id,
                chat_id=chat_id,
                text=compact,
                embedding=vector,
                created_at=self._clock.now(),
            )
        except Exception as e:
            self._degraded("store", account_id, chat_id, e)
            return None

    async def maybe_summarize(self, account_id: str, chat_id: str) -> MemoryRecord | None:
        """Collapse the oldest span once more than ``summary_threshold`` messages accumulated."""
        if not self.config.enabled or self._summarizer is None:
            return None
        threshold = self.config.summary_threshold
        try:
            pending = self._store.messages_since_summary(account_id, chat_id)
            if pending <= threshold:
                return None
            span = self._store.oldest_messages(account_id, chat_id, limit=threshold)
            if len(span) < 2:
                return None
            listing = "\n".join(f"- {record.text}" for record in span)
            digest = (await self._summarizer.complete(_SUMMARY_PROMPT.format(messages=listing))).strip()
            if not digest:
                logger.info("memory_summary_empty account={} chat={}", account_id, chat_id)
                return None
            vector = await self._embed(digest)
            record, summary = self._store.replace_with_summary(
                account_id=account_id,
                chat_id=chat_id,
                span=span,
                text=digest,
                embedding=vector,
            )
        except Exception as e:
            self._degraded("summarize", account_id, chat_id, e)
            return None
        logger.info(
            "memory_summarized account={} chat={} messages={} span_from={} span_to={}",
            account_id,
            chat_id,
            summary.message_count,
            summary.span_from,
            summary.span_to,
        )
        return record

    def purge_account(self, account_id: str) -> int:
        return self._store.purge_account(account_id)
