"""Rate and admission gate: staleness, chat eligibility, flood control."""

from __future__ import annotations

import random
import re
import threading
from collections import deque
from collections.abc import Iterable

from loguru import logger

from personaforge.config.schema import GateConfig, PersonaConfig
from personaforge.core.models import Account, AdmissionResult, ChatPolicy, InboundEvent
from personaforge.core.ports import ClockPort

_SWEEP_THRESHOLD = 4096


class SlidingWindowLimiter:
    """Per-key sliding window of accepted timestamps.

    Entries older than the window are pruned on every access, and keys whose
    window empties are swept once the map grows past a threshold.
    """

    def __init__(self, *, max_events: int, window_seconds: float) -> None:
        self._max_events = max(1, int(max_events))
        self._window_seconds = float(window_seconds)
        self._windows: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, window: deque[float], now: float) -> None:
        cutoff = now - self._window_seconds
        while window and window[0] < cutoff:
            window.popleft()

    def try_acquire(self, key: str, now: float) -> bool:
        """Record ``now`` for ``key`` unless the window is already full."""
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = deque()
                self._windows[key] = window
            self._prune(window, now)
            if len(window) >= self._max_events:
                return False
            window.append(now)
            if len(self._windows) > _SWEEP_THRESHOLD:
                self._sweep(now)
            return True

    def count(self, key: str, now: float) -> int:
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return 0
            self._prune(window, now)
            return len(window)

    def _sweep(self, now: float) -> None:
        for key in list(self._windows):
            window = self._windows[key]
            self._prune(window, now)
            if not window:
                del self._windows[key]


def _contains_word(text: str, word: str) -> bool:
    word = word.strip()
    if not word:
        return False
    return re.search(rf"(?<!\w){re.escape(word)}(?!\w)", text, re.IGNORECASE) is not None


class AdmissionGate:
    """Decide whether one inbound event starts a turn.

    One gate instance belongs to one account worker, so rate and cooldown
    state are never shared between accounts.
    """

    def __init__(
        self,
        *,
        config: GateConfig,
        clock: ClockPort,
        persona: PersonaConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._clock = clock
        self._persona = persona
        self._rng = rng or random.Random()
        self._flood = SlidingWindowLimiter(
            max_events=config.flood_max_messages,
            window_seconds=config.flood_window_seconds,
        )
        self._chat_last_accepted: dict[str, float] = {}

    @property
    def flood(self) -> SlidingWindowLimiter:
        return self._flood

    def admit(self, event: InboundEvent, account: Account, policy: ChatPolicy) -> AdmissionResult:
        now = self._clock.now()
        settings = account.humanization

        age = now - event.timestamp
        if settings.ignore_older_than_seconds > 0 and age > settings.ignore_older_than_seconds:
            return AdmissionResult(accepted=False, reason="stale", detail=f"age={age:.0f}s")

        eligible, trigger = self._eligibility(event, account, policy)
        if not eligible:
            return AdmissionResult(accepted=False, reason="not_eligible", detail=trigger)

        if not event.is_private and policy.cooldown_seconds > 0:
            last = self._chat_last_accepted.get(event.chat_id)
            if last is not None and now - last < policy.cooldown_seconds:
                return AdmissionResult(accepted=False, reason="rate_limited", detail="chat_cooldown")

        if not self._flood.try_acquire(event.sender_id, now):
            logger.debug(
                "flood_control account={} sender={} chat={}",
                account.account_id,
                event.sender_id,
                event.chat_id,
            )
            return AdmissionResult(accepted=False, reason="rate_limited", detail="flood")

        if not event.is_private:
            self._chat_last_accepted[event.chat_id] = now
        return AdmissionResult(accepted=True, trigger=trigger)

    def _eligibility(self, event: InboundEvent, account: Account, policy: ChatPolicy) -> tuple[bool, str]:
        if not policy.enabled:
            return False, "chat_disabled"

        settings = account.humanization
        if event.is_private:
            if settings.always_respond_in_private:
                return True, "private"
            return self._roll(settings.respond_probability), "private_probability"

        if event.reply_to_self:
            return True, "reply_to_self"
        # Media is not extracted yet, so a group voice note qualifies only
        # through its caption or the transport's mention and reply flags.
        text = event.content
        if event.mentions_self or self._is_mentioned(text, account):
            return True, "mention"
        trigger = self._match_trigger(text, policy.triggers)
        if trigger:
            return True, f"trigger:{trigger}"
        if policy.reply_mode == "all_messages":
            return self._roll(settings.respond_probability), "all_messages"
        return False, "no_trigger"

    def _is_mentioned(self, text: str, account: Account) -> bool:
        if not text:
            return False
        lowered = text.lower()
        if account.username and f"@{account.username.lower().lstrip('@')}" in lowered:
            return True
        if self._persona is not None and self._persona.display_name:
            return _contains_word(text, self._persona.display_name)
        return False

    def _match_trigger(self, text: str, chat_triggers: Iterable[str]) -> str | None:
        if not text:
            return None
        words = list(chat_triggers)
        if self._persona is not None:
            words.extend(self._persona.triggers)
        for word in words:
            if _contains_word(text, word):
                return word.strip()
        return None

    def _roll(self, probability: float) -> bool:
        if probability >= 1.0:
            return True
        if probability <= 0.0:
            return False
        return self._rng.random() < probability
