"""Utility functions for personaforge."""

import os
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Get the personaforge home directory.

    Respects PERSONAFORGE_HOME environment variable; falls back to ~/.personaforge.
    """
    home = os.environ.get("PERSONAFORGE_HOME", "").strip()
    if home:
        return ensure_dir(Path(home).expanduser())
    return ensure_dir(Path.home() / ".personaforge")


def get_operational_data_path() -> Path:
    """Get the long-lived operational data directory (~/.personaforge/data)."""
    return ensure_dir(get_data_path() / "data")


def get_logs_path() -> Path:
    """Get the logs directory (~/.personaforge/logs)."""
    return ensure_dir(get_data_path() / "logs")


def compact_text(text: str, limit: int) -> str:
    """Collapse whitespace and truncate with an ellipsis."""
    compact = " ".join(text.split())
    if len(compact) <= limit:
        return compact
    return compact[: max(0, limit - 3)] + "..."
