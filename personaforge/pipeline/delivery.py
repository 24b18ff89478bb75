"""Delivery middleware: plan and execute humanized sending."""

from __future__ import annotations

from loguru import logger

from personaforge.core.models import Chunks
from personaforge.core.pipeline import NextFn, PipelineContext
from personaforge.delivery.engine import DeliveryEngine
from personaforge.delivery.timing import DeliveryPlanner


class DeliveryMiddleware:
    """Deliver ``Chunks`` through the account's engine."""

    def __init__(self, *, planner: DeliveryPlanner, engine: DeliveryEngine) -> None:
        self._planner = planner
        self._engine = engine

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        outcome = ctx.outcome
        if not isinstance(outcome, Chunks):
            await next(ctx)
            return

        event = ctx.event
        plan = self._planner.plan(outcome, event=event, settings=ctx.account.humanization)
        logger.debug(
            "delivery_planned account={} chat={} chunks={} mode={} seconds={:.1f}",
            event.account_id,
            event.chat_id,
            len(plan.chunks),
            plan.send_mode,
            sum(chunk.planned_seconds for chunk in plan.chunks),
        )
        sent = await self._engine.deliver(plan, chat_id=event.chat_id, read_message_id=event.message_id)
        ctx.sent_chunks.extend(sent)
        ctx.metric("chunks_sent", value=len(sent))
        if sent:
            logger.info(
                "turn_delivered account={} chat={} chunks={}/{}",
                event.account_id,
                event.chat_id,
                len(sent),
                len(plan.chunks),
            )
        await next(ctx)
