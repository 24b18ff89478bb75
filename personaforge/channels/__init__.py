"""Chat network transports."""

from personaforge.channels.bridge import BridgeTransport

__all__ = ["BridgeTransport"]
