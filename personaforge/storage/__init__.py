"""Account, chat policy and history persistence."""

from personaforge.storage.registry import AccountRegistry

__all__ = ["AccountRegistry"]
