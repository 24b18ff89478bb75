"""Security middleware: blocked senders and flagged content."""

from __future__ import annotations

import random

from loguru import logger

from personaforge.config.schema import SecurityConfig
from personaforge.core.models import Chunks
from personaforge.core.pipeline import NextFn, PipelineContext
from personaforge.security.screen import SecurityScreen


class SecurityMiddleware:
    """Screen the sender and text, then apply the flagged action.

    ``drop`` halts the turn, ``deflect`` sets a canned reply that is delivered
    without an LLM call, ``answer`` lets the turn continue.
    """

    def __init__(
        self,
        *,
        screen: SecurityScreen,
        config: SecurityConfig,
        rng: random.Random | None = None,
    ) -> None:
        self._screen = screen
        self._config = config
        self._rng = rng or random.Random()

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        event = ctx.event
        result = self._screen.screen(event.account_id, event.sender_id, event.content)
        ctx.screen = result

        if result.verdict == "blocked":
            logger.debug(
                "turn_dropped account={} sender={} reason=blocked until={}",
                event.account_id,
                event.sender_id,
                result.blocked_until,
            )
            ctx.drop("blocked")
            return

        if result.verdict == "flagged":
            action = self._config.flagged_action
            ctx.metric("security_flagged", labels=(("action", action), ("pattern", result.pattern or "-")))
            if action == "drop" or result.blocked_until is not None:
                ctx.drop("flagged")
                return
            if action == "deflect":
                if not self._config.deflections:
                    ctx.drop("flagged")
                    return
                ctx.outcome = Chunks((self._rng.choice(self._config.deflections),))

        await next(ctx)
