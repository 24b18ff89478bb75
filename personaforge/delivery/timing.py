"""Delivery planning: read delay, typing duration, distraction, send mode."""

from __future__ import annotations

import random

from personaforge.config.schema import DeliveryConfig
from personaforge.core.models import (
    ChunkPlan,
    Chunks,
    DeliveryPlan,
    Distraction,
    HumanizationSettings,
    InboundEvent,
    SendMode,
)


class DeliveryPlanner:
    """Draws every random timing value for a turn up front.

    The plan is pure data, so the engine only has to follow it and tests can
    inspect exact durations before anything is scheduled.
    """

    def __init__(self, config: DeliveryConfig, rng: random.Random | None = None) -> None:
        self._config = config
        self._rng = rng or random.Random()

    def read_delay(self, settings: HumanizationSettings) -> float:
        low = max(0.0, settings.min_read_delay_seconds)
        high = max(low, settings.max_read_delay_seconds)
        return self._rng.uniform(low, high)

    def typing_seconds(self, text: str, typing_speed_cpm: int) -> float:
        """``len / cpm * 60`` with random variance, clamped to floor and cap."""
        cpm = max(1, int(typing_speed_cpm))
        base = len(text) / cpm * 60.0
        variance = self._config.typing_variance
        if variance > 0:
            base *= self._rng.uniform(1.0 - variance, 1.0 + variance)
        cap = max(self._config.typing_floor_seconds, self._config.typing_cap_seconds)
        return min(cap, max(self._config.typing_floor_seconds, base))

    def distraction(self, typing_seconds: float) -> Distraction | None:
        cfg = self._config
        if cfg.distraction_probability <= 0 or self._rng.random() >= cfg.distraction_probability:
            return None
        after = self._rng.uniform(cfg.distraction_typing_min_seconds, cfg.distraction_typing_max_seconds)
        if after >= typing_seconds:
            # Too short to be interrupted.
            return None
        pause = self._rng.uniform(cfg.distraction_pause_min_seconds, cfg.distraction_pause_max_seconds)
        return Distraction(after_seconds=after, pause_seconds=pause)

    def inter_chunk_pause(self) -> float:
        return self._rng.uniform(self._config.inter_chunk_pause_min_seconds, self._config.inter_chunk_pause_max_seconds)

    def choose_send_mode(self, event: InboundEvent, settings: HumanizationSettings) -> SendMode:
        if event.message_id is None:
            return "standalone"
        if event.is_private:
            return "standalone"
        if event.reply_to_self:
            return "as_reply"
        return "as_reply" if self._rng.random() < settings.reply_probability else "standalone"

    def plan(self, chunks: Chunks, *, event: InboundEvent, settings: HumanizationSettings) -> DeliveryPlan:
        planned: list[ChunkPlan] = []
        for index, text in enumerate(chunks.texts):
            typing = self.typing_seconds(text, settings.typing_speed_cpm)
            planned.append(
                ChunkPlan(
                    text=text,
                    read_delay_seconds=self.read_delay(settings) if index == 0 else 0.0,
                    typing_seconds=typing,
                    pause_before_seconds=0.0 if index == 0 else self.inter_chunk_pause(),
                    distraction=self.distraction(typing),
                )
            )
        send_mode = self.choose_send_mode(event, settings)
        return DeliveryPlan(
            chunks=tuple(planned),
            send_mode=send_mode,
            reply_to_message_id=event.message_id if send_mode == "as_reply" else None,
        )
