"""Inbound injection screening."""

from personaforge.security.escalation import EscalationPolicy
from personaforge.security.screen import SecurityScreen
from personaforge.security.store import SecurityStore

__all__ = ["EscalationPolicy", "SecurityScreen", "SecurityStore"]
