"""Error taxonomy for turn and worker failures.

Drops (stale, not eligible, rate limited, blocked, flagged) are ordinary
results, not exceptions. Everything here is operational and never reaches
the chat itself.
"""

from __future__ import annotations


class PersonaForgeError(RuntimeError):
    """Base class for pipeline errors."""


class MemoryDegraded(PersonaForgeError):
    """Embedding or memory storage failed; the turn continues without memory."""


class GenerationTimeout(PersonaForgeError):
    """LLM queue wait or completion exceeded its timeout."""


class GenerationFailed(PersonaForgeError):
    """LLM call raised or returned an unusable response."""


class DeliveryFailed(PersonaForgeError):
    """Transport rejected one outbound chunk."""

    def __init__(self, chat_id: str, reason: str):
        super().__init__(f"delivery to {chat_id} failed: {reason}")
        self.chat_id = chat_id
        self.reason = reason


class TransportClosed(PersonaForgeError):
    """Transport session ended or could not be established."""


class WorkerFault(PersonaForgeError):
    """Unrecoverable worker failure reported to the supervisor."""

    def __init__(self, account_id: str, cause: BaseException):
        super().__init__(f"account {account_id} faulted: {cause.__class__.__name__}: {cause}")
        self.account_id = account_id
        self.cause = cause
