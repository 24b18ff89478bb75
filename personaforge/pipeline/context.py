"""Context middleware: recent conversation turns and history logging."""

from __future__ import annotations

from loguru import logger

from personaforge.core.pipeline import NextFn, PipelineContext
from personaforge.storage.registry import AccountRegistry


class ContextMiddleware:
    """Load recent turns for the prompt, then log this turn to history."""

    def __init__(self, *, registry: AccountRegistry) -> None:
        self._registry = registry

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        event = ctx.event
        depth = ctx.policy.context_depth
        # Flagged text must never reach a later prompt.
        flagged = ctx.screen is not None and ctx.screen.verdict == "flagged"
        try:
            ctx.history = self._registry.recent_history(event.account_id, event.chat_id, depth)
            if not flagged:
                self._registry.append_history(
                    event.account_id,
                    event.chat_id,
                    role="user",
                    text=event.content or f"({event.kind})",
                    sender_name=event.sender_name,
                    created_at=event.timestamp,
                )
        except Exception as e:
            logger.warning("history_unavailable account={} chat={} error={}", event.account_id, event.chat_id, e)

        await next(ctx)

        if not ctx.sent_chunks:
            return
        try:
            self._registry.append_history(
                event.account_id,
                event.chat_id,
                role="assistant",
                text="\n".join(ctx.sent_chunks),
            )
        except Exception as e:
            logger.warning("history_append_failed account={} chat={} error={}", event.account_id, event.chat_id, e)
