"""Embedding-indexed semantic memory."""

from personaforge.memory.render import render_memory_hits
from personaforge.memory.service import MemoryService
from personaforge.memory.store import MemoryStore

__all__ = ["MemoryService", "MemoryStore", "render_memory_hits"]
