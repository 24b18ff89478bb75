"""Telemetry sinks."""

from personaforge.telemetry.inmemory import InMemoryTelemetry
from personaforge.telemetry.prometheus import PrometheusTelemetry

__all__ = ["InMemoryTelemetry", "PrometheusTelemetry"]
