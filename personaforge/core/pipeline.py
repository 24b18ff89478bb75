"""Middleware pipeline for one conversation turn.

Each stage of a turn (admission, media extraction, screening, context,
memory, response, delivery) is a middleware class. A middleware calls
``next()`` to pass through, or ``ctx.halt()`` to drop the turn.

Usage::

    pipeline = Pipeline([
        AdmissionMiddleware(gate=gate),
        SecurityMiddleware(screen=screen, config=config.security),
        ResponderMiddleware(orchestrator=orchestrator),
        DeliveryMiddleware(planner=planner, engine=engine),
    ])
    ctx = await pipeline.run(event, account=account, policy=policy)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from personaforge.core.models import (
    Account,
    AdmissionResult,
    ChatPolicy,
    DecisionOutcome,
    HistoryTurn,
    InboundEvent,
    MemoryHit,
    ScreenResult,
)


@dataclass(frozen=True, slots=True)
class MetricSample:
    name: str
    value: int = 1
    labels: tuple[tuple[str, str], ...] = ()


@dataclass
class PipelineContext:
    """Mutable state flowing through the middleware chain.

    Attributes:
        event: The inbound event.  Media middleware replaces it with a copy
            carrying extracted text.
        account: Account the turn belongs to.
        policy: Chat policy read for this event.
        admission: Gate result.
        screen: Security screen result.
        history: Recent conversation turns, oldest first.
        memory_hits: Retrieved memory, best first.
        outcome: Set by the responder (or a security deflection).
        sent_chunks: Texts the transport accepted, in order.
        metrics: Counters flushed to telemetry by the worker.
        halted: When ``True``, the pipeline stops executing further middleware.
    """

    event: InboundEvent
    account: Account
    policy: ChatPolicy
    admission: AdmissionResult | None = None
    screen: ScreenResult | None = None
    history: list[HistoryTurn] = field(default_factory=list)
    memory_hits: list[MemoryHit] = field(default_factory=list)
    outcome: DecisionOutcome | None = None
    sent_chunks: list[str] = field(default_factory=list)
    metrics: list[MetricSample] = field(default_factory=list)
    halted: bool = False

    def metric(
        self,
        name: str,
        value: int = 1,
        labels: tuple[tuple[str, str], ...] = (),
    ) -> None:
        self.metrics.append(MetricSample(name=name, value=value, labels=labels))

    def halt(self) -> None:
        """Signal the pipeline to stop after this middleware."""
        self.halted = True

    def drop(self, reason: str) -> None:
        """Halt and count the turn as dropped for ``reason``."""
        self.metric("turn_dropped", labels=(("reason", reason),))
        self.halt()


NextFn = Callable[[PipelineContext], Awaitable[None]]
"""Signature for the ``next`` callback passed to each middleware."""


@runtime_checkable
class Middleware(Protocol):
    """Protocol for pipeline middleware.

    Implementations must be callable with ``(ctx, next)`` and may:

    1. Modify ``ctx`` and call ``await next(ctx)`` to pass through.
    2. Call ``ctx.halt()`` to short-circuit.
    3. Call ``await next(ctx)`` then inspect the result to post-process.
    """

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None: ...


class Pipeline:
    """Ordered chain of middleware that processes one turn."""

    __slots__ = ("_layers",)

    def __init__(self, layers: list[Middleware]) -> None:
        self._layers = list(layers)

    async def run(self, event: InboundEvent, *, account: Account, policy: ChatPolicy) -> PipelineContext:
        """Process *event* through the full middleware chain and return the final context."""
        ctx = PipelineContext(event=event, account=account, policy=policy)
        await self._execute(ctx, index=0)
        return ctx

    async def _execute(self, ctx: PipelineContext, index: int) -> None:
        if ctx.halted or index >= len(self._layers):
            return
        layer = self._layers[index]
        await layer(ctx, lambda c: self._execute(c, index + 1))

    def __len__(self) -> int:
        return len(self._layers)

    def __repr__(self) -> str:
        names = [type(m).__name__ for m in self._layers]
        return f"Pipeline({' -> '.join(names)})"
