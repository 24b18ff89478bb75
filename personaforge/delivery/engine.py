"""Per-chunk delivery state machine driven by an injected clock."""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from personaforge.core.errors import DeliveryFailed
from personaforge.core.models import ChunkPlan, DeliveryPlan, DeliveryState
from personaforge.core.ports import ClockPort, TelemetryPort, TransportPort

TransitionHook = Callable[[int, DeliveryState], None]


class DeliveryEngine:
    """Execute a ``DeliveryPlan`` chunk by chunk.

    States per chunk: pending_read, reading (first chunk only), typing_start,
    typing_steady or distracted, typing_done, sent. All waiting goes through
    ``clock.sleep`` so cancelling the caller cancels the timers, and nothing
    is sent once cancellation has been observed.

    Read receipts and typing indicators are cosmetic: their failures are
    logged and ignored. A failed send is logged as ``DeliveryFailed`` and the
    remaining chunks are still attempted.
    """

    def __init__(
        self,
        transport: TransportPort,
        clock: ClockPort,
        *,
        typing_refresh_seconds: float = 4.0,
        telemetry: TelemetryPort | None = None,
        on_transition: TransitionHook | None = None,
    ) -> None:
        self._transport = transport
        self._clock = clock
        self._refresh = max(0.1, float(typing_refresh_seconds))
        self._telemetry = telemetry
        self._on_transition = on_transition

    async def deliver(self, plan: DeliveryPlan, *, chat_id: str, read_message_id: str | None = None) -> list[str]:
        """Run the plan and return the texts the transport accepted, in order."""
        sent: list[str] = []
        for index, chunk in enumerate(plan.chunks):
            if index > 0 and chunk.pause_before_seconds > 0:
                await self._clock.sleep(chunk.pause_before_seconds)
            self._enter(index, "pending_read")

            if index == 0 and chunk.read_delay_seconds > 0:
                self._enter(index, "reading")
                if read_message_id:
                    await self._mark_read(chat_id, read_message_id)
                await self._clock.sleep(chunk.read_delay_seconds)

            await self._type_chunk(index, chunk, chat_id)

            reply_to = plan.reply_to_message_id if plan.send_mode == "as_reply" and index == 0 else None
            try:
                await self._transport.send_text(chat_id, chunk.text, reply_to_message_id=reply_to)
            except Exception as e:
                error = DeliveryFailed(chat_id, f"{e.__class__.__name__}: {e}")
                logger.warning("delivery_failed chunk={}/{} error={}", index + 1, len(plan.chunks), error)
                if self._telemetry is not None:
                    self._telemetry.incr("delivery_failed")
                continue
            sent.append(chunk.text)
            self._enter(index, "sent")
        return sent

    async def _type_chunk(self, index: int, chunk: ChunkPlan, chat_id: str) -> None:
        self._enter(index, "typing_start")
        distraction = chunk.distraction
        if distraction is None:
            self._enter(index, "typing_steady")
            await self._type_for(chat_id, chunk.typing_seconds)
        else:
            await self._type_for(chat_id, distraction.after_seconds)
            self._enter(index, "distracted")
            await self._set_typing(chat_id, False)
            await self._clock.sleep(distraction.pause_seconds)
            await self._type_for(chat_id, chunk.typing_seconds - distraction.after_seconds)
        await self._set_typing(chat_id, False)
        self._enter(index, "typing_done")

    async def _type_for(self, chat_id: str, seconds: float) -> None:
        # Chat clients expire the indicator after a few seconds; refresh it.
        remaining = max(0.0, seconds)
        while remaining > 0:
            await self._set_typing(chat_id, True)
            step = min(self._refresh, remaining)
            await self._clock.sleep(step)
            remaining -= step

    async def _set_typing(self, chat_id: str, enabled: bool) -> None:
        try:
            await self._transport.set_typing(chat_id, enabled)
        except Exception as e:
            logger.debug("typing_indicator_failed chat={} enabled={} error={}", chat_id, enabled, e)

    async def _mark_read(self, chat_id: str, message_id: str) -> None:
        if not self._transport.supports_read_receipts:
            return
        try:
            await self._transport.mark_read(chat_id, message_id)
        except Exception as e:
            logger.debug("mark_read_failed chat={} message={} error={}", chat_id, message_id, e)

    def _enter(self, index: int, state: DeliveryState) -> None:
        if self._on_transition is not None:
            self._on_transition(index, state)
