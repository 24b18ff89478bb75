"""Runtime bootstrap."""

from personaforge.app.bootstrap import Runtime, build_runtime

__all__ = ["Runtime", "build_runtime"]
