"""Middleware layers binding the components into one turn."""

from personaforge.pipeline.admission import AdmissionMiddleware
from personaforge.pipeline.context import ContextMiddleware
from personaforge.pipeline.delivery import DeliveryMiddleware
from personaforge.pipeline.media import MediaMiddleware
from personaforge.pipeline.memory import MemoryMiddleware
from personaforge.pipeline.responder import ResponderMiddleware
from personaforge.pipeline.security import SecurityMiddleware

__all__ = [
    "AdmissionMiddleware",
    "ContextMiddleware",
    "DeliveryMiddleware",
    "MediaMiddleware",
    "MemoryMiddleware",
    "ResponderMiddleware",
    "SecurityMiddleware",
]
