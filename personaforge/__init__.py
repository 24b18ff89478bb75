"""
personaforge - a fleet of persona-driven chat accounts.
"""

__version__ = "0.1.0"
__logo__ = "🎭"
