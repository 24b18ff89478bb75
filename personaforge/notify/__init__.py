"""Owner notification channel."""

from personaforge.notify.owner import OwnerNotifier

__all__ = ["OwnerNotifier"]
