"""Admission middleware: staleness, eligibility and flood control."""

from __future__ import annotations

from loguru import logger

from personaforge.core.pipeline import NextFn, PipelineContext
from personaforge.gate.admission import AdmissionGate


class AdmissionMiddleware:
    """Drop the turn unless the gate accepts the event."""

    def __init__(self, *, gate: AdmissionGate) -> None:
        self._gate = gate

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        result = self._gate.admit(ctx.event, ctx.account, ctx.policy)
        ctx.admission = result
        if not result.accepted:
            logger.debug(
                "turn_dropped account={} chat={} sender={} reason={} detail={}",
                ctx.account.account_id,
                ctx.event.chat_id,
                ctx.event.sender_id,
                result.reason,
                result.detail,
            )
            ctx.drop(result.reason or "not_eligible")
            return

        ctx.metric("turn_admitted", labels=(("trigger", result.trigger.split(":", 1)[0]),))
        await next(ctx)
