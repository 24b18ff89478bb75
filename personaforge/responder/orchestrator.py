"""Response orchestration: prompt, optional search, bounded completion, parsing."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from loguru import logger

from personaforge.core.errors import GenerationFailed, GenerationTimeout
from personaforge.core.models import (
    Account,
    DecisionOutcome,
    HistoryTurn,
    InboundEvent,
    MemoryHit,
    Suppress,
)
from personaforge.core.ports import CompletionPort, OwnerNotifierPort, SearchPort, TelemetryPort
from personaforge.memory.render import render_memory_hits
from personaforge.responder.parse import parse_completion
from personaforge.responder.prompt import PromptInput, build_prompt
from personaforge.responder.search import SearchDecider, render_search_results

if TYPE_CHECKING:
    from personaforge.config.schema import LLMConfig, PersonaConfig


class ResponseOrchestrator:
    """Produce ``Suppress`` or ``Chunks`` for one accepted turn.

    ``completion`` is expected to be the process-wide ``LimitedCompletion``
    so every account shares one concurrency limit. Generation errors are
    never retried; they suppress the turn and are reported to the owner.
    """

    def __init__(
        self,
        *,
        config: "LLMConfig",
        completion: CompletionPort,
        personas: Callable[[str], "PersonaConfig"],
        decider: SearchDecider | None = None,
        search: SearchPort | None = None,
        telemetry: TelemetryPort | None = None,
        notifier: OwnerNotifierPort | None = None,
        memory_max_chars: int = 1200,
    ) -> None:
        self._config = config
        self._completion = completion
        self._personas = personas
        self._decider = decider
        self._search = search
        self._telemetry = telemetry
        self._notifier = notifier
        self._memory_max_chars = memory_max_chars

    async def respond(
        self,
        *,
        account: Account,
        event: InboundEvent,
        history: Sequence[HistoryTurn] = (),
        memory_hits: Sequence[MemoryHit] = (),
    ) -> DecisionOutcome:
        persona = self._personas(account.persona)
        search_block = await self._search_block(account, event)
        prompt = build_prompt(
            PromptInput(
                persona=persona,
                message=event.text.strip(),
                sender_name=event.sender_name,
                is_private=event.is_private,
                history=tuple(history),
                memory_block=render_memory_hits(list(memory_hits), self._memory_max_chars),
                search_block=search_block,
                media_kind=event.kind,
                media_text=event.media_text,
                ignore_marker=self._config.ignore_marker,
                separator=self._config.chunk_separator,
            )
        )

        try:
            raw = await self._completion.complete(prompt)
        except GenerationTimeout as e:
            await self._report("generation_timeout", account, event, e)
            return Suppress("generation_timeout")
        except GenerationFailed as e:
            await self._report("generation_failed", account, event, e)
            return Suppress("generation_failed")

        outcome = parse_completion(
            raw,
            ignore_marker=self._config.ignore_marker,
            separator=self._config.chunk_separator,
            speaker=persona.display_name or persona.name,
        )
        if isinstance(outcome, Suppress):
            logger.debug(
                "turn_suppressed account={} chat={} reason={}",
                account.account_id,
                event.chat_id,
                outcome.reason,
            )
        return outcome

    async def _search_block(self, account: Account, event: InboundEvent) -> str:
        if self._decider is None or self._search is None or not self._decider.enabled:
            return ""
        query = await self._decider.decide(event.content)
        if not query:
            return ""
        try:
            results = await self._search.search(query)
        except Exception as e:
            logger.warning("search_failed account={} query={} error={}", account.account_id, query, e)
            self._incr("search_failed", account)
            return ""
        logger.info("search_used account={} query={} results={}", account.account_id, query, len(results))
        return render_search_results(query, results)

    async def _report(self, kind: str, account: Account, event: InboundEvent, error: Exception) -> None:
        logger.warning("{} account={} chat={} error={}", kind, account.account_id, event.chat_id, error)
        self._incr(kind, account)
        if self._notifier is None:
            return
        try:
            await self._notifier.notify(
                f"[{account.account_id}] {kind.replace('_', ' ')}: {error}",
                key=f"{kind}:{account.account_id}",
            )
        except Exception as e:
            logger.warning("owner_notify_failed account={} error={}", account.account_id, e)

    def _incr(self, name: str, account: Account) -> None:
        if self._telemetry is not None:
            self._telemetry.incr(name, labels=(("account", account.account_id),))
