"""Injection screen with strike escalation."""

from __future__ import annotations

from loguru import logger

from personaforge.config.schema import SecurityConfig
from personaforge.core.models import ScreenResult
from personaforge.core.ports import ClockPort
from personaforge.security.escalation import EscalationPolicy
from personaforge.security.normalize import normalize_text
from personaforge.security.rules import compile_extra_patterns, scan
from personaforge.security.store import SecurityStore


class SecurityScreen:
    """Screen inbound text per sender: blocked, flagged or clear."""

    def __init__(self, config: SecurityConfig, store: SecurityStore, clock: ClockPort) -> None:
        self._config = config
        self._store = store
        self._clock = clock
        self._policy = EscalationPolicy.from_config(config.escalation)
        self._extra = compile_extra_patterns(config.extra_patterns)

    @property
    def policy(self) -> EscalationPolicy:
        return self._policy

    def is_blocked(self, account_id: str, sender_id: str) -> bool:
        """Cheap block lookup for stages that run before the full screen."""
        if not self._config.enabled:
            return False
        try:
            state = self._store.get(account_id, sender_id)
        except Exception as e:
            logger.warning("security_block_lookup_failed account={} sender={} error={}", account_id, sender_id, e)
            return self._config.fail_mode == "closed"
        return state is not None and state.is_blocked(self._clock.now())

    def screen(self, account_id: str, sender_id: str, text: str) -> ScreenResult:
        if not self._config.enabled:
            return ScreenResult(verdict="clear")
        now = self._clock.now()
        try:
            state = self._store.get(account_id, sender_id)
            if state is not None and state.is_blocked(now):
                return ScreenResult(verdict="blocked", blocked_until=state.blocked_until, strikes=state.strikes)

            hit = scan(normalize_text(text), self._extra)
            if hit is None:
                return ScreenResult(verdict="clear", strikes=state.strikes if state is not None else 0)

            updated = self._store.record_violation(account_id, sender_id, now=now, policy=self._policy)
            result = ScreenResult(
                verdict="flagged",
                pattern=hit.tag,
                blocked_until=updated.blocked_until if updated.is_blocked(now) else None,
                strikes=updated.strikes,
            )
            logger.info(
                "security_flagged account={} sender={} tag={} severity={} strikes={} blocked_until={}",
                account_id,
                sender_id,
                hit.tag,
                hit.severity,
                updated.strikes,
                result.blocked_until,
            )
            return result
        except Exception as e:
            return self._failure(account_id=account_id, sender_id=sender_id, error=e)

    def _failure(self, *, account_id: str, sender_id: str, error: Exception) -> ScreenResult:
        logger.warning(
            "security_error account={} sender={} fail_mode={} error={}",
            account_id,
            sender_id,
            self._config.fail_mode,
            error,
        )
        if self._config.fail_mode == "open":
            return ScreenResult(verdict="clear")
        return ScreenResult(verdict="flagged", pattern="screen_error")

    def unblock(self, account_id: str, sender_id: str) -> bool:
        return self._store.unblock(account_id, sender_id)

    def reset(self, account_id: str, sender_id: str) -> bool:
        return self._store.reset(account_id, sender_id)
