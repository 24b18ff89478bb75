"""Rate and admission gate."""

from personaforge.gate.admission import AdmissionGate, SlidingWindowLimiter

__all__ = ["AdmissionGate", "SlidingWindowLimiter"]
