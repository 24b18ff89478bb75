"""Typed core domain and pipeline primitives."""

from personaforge.core.models import (
    Account,
    ChatPolicy,
    Chunks,
    DecisionOutcome,
    InboundEvent,
    MemoryRecord,
    SecurityState,
    Suppress,
)
from personaforge.core.pipeline import Pipeline, PipelineContext

__all__ = [
    "Account",
    "ChatPolicy",
    "Chunks",
    "DecisionOutcome",
    "InboundEvent",
    "MemoryRecord",
    "Pipeline",
    "PipelineContext",
    "SecurityState",
    "Suppress",
]
