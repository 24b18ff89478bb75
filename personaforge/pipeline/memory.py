"""Memory middleware: retrieve before responding, store after."""

from __future__ import annotations

from personaforge.core.pipeline import NextFn, PipelineContext
from personaforge.memory.service import MemoryService


class MemoryMiddleware:
    """Best-effort memory around the responder.

    Flagged text is never stored. The bot reply is stored only when at least
    one chunk was actually sent.
    """

    def __init__(self, *, memory: MemoryService) -> None:
        self._memory = memory

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        if not ctx.policy.memory_enabled:
            await next(ctx)
            return

        event = ctx.event
        flagged = ctx.screen is not None and ctx.screen.verdict == "flagged"
        query = event.content
        if ctx.outcome is None and query:
            ctx.memory_hits = await self._memory.retrieve(event.account_id, event.chat_id, query)
            if ctx.memory_hits:
                ctx.metric("memory_hits", value=len(ctx.memory_hits))
        if query and not flagged:
            await self._memory.store(event.account_id, event.chat_id, query)

        await next(ctx)

        if ctx.sent_chunks:
            await self._memory.store(event.account_id, event.chat_id, " ".join(ctx.sent_chunks))
        await self._memory.maybe_summarize(event.account_id, event.chat_id)
