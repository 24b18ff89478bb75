"""Responder middleware: ask the orchestrator for the turn outcome."""

from __future__ import annotations

from personaforge.core.models import Suppress
from personaforge.core.pipeline import NextFn, PipelineContext
from personaforge.responder.orchestrator import ResponseOrchestrator


class ResponderMiddleware:
    """Produce ``ctx.outcome`` unless an earlier stage already set one."""

    def __init__(self, *, orchestrator: ResponseOrchestrator) -> None:
        self._orchestrator = orchestrator

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        if ctx.outcome is None:
            ctx.outcome = await self._orchestrator.respond(
                account=ctx.account,
                event=ctx.event,
                history=ctx.history,
                memory_hits=ctx.memory_hits,
            )

        if isinstance(ctx.outcome, Suppress):
            ctx.metric("turn_suppressed", labels=(("reason", ctx.outcome.reason),))
            ctx.halt()
            return
        await next(ctx)
