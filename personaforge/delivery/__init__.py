"""Humanized delivery: planning and the per-chunk state machine."""

from personaforge.delivery.engine import DeliveryEngine
from personaforge.delivery.timing import DeliveryPlanner

__all__ = ["DeliveryEngine", "DeliveryPlanner"]
