"""Centralized opinionated defaults for generated config files."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

DEFAULT_CHAT_MODEL = "ollama/gemma2:2b"
DEFAULT_EMBEDDING_MODEL = "ollama/nomic-embed-text"
DEFAULT_VISION_MODEL = "ollama/llava"
DEFAULT_ASR_MODEL = "whisper-large-v3"

DEFAULT_HUMANIZATION: dict[str, Any] = {
    "min_read_delay_seconds": 5.0,
    "max_read_delay_seconds": 60.0,
    "typing_speed_cpm": 200,
    "reply_probability": 0.7,
    "respond_probability": 1.0,
    "always_respond_in_private": True,
    "ignore_older_than_seconds": 300,
}

DEFAULT_DELIVERY: dict[str, Any] = {
    "typing_floor_seconds": 1.0,
    "typing_cap_seconds": 30.0,
    "typing_variance": 0.2,
    "typing_refresh_seconds": 4.0,
    "distraction_probability": 0.2,
    "distraction_typing_min_seconds": 2.0,
    "distraction_typing_max_seconds": 4.0,
    "distraction_pause_min_seconds": 3.0,
    "distraction_pause_max_seconds": 10.0,
    "inter_chunk_pause_min_seconds": 0.5,
    "inter_chunk_pause_max_seconds": 1.5,
}

DEFAULT_GATE: dict[str, Any] = {
    "flood_max_messages": 5,
    "flood_window_seconds": 60.0,
}

DEFAULT_CHAT_POLICY: dict[str, Any] = {
    "enabled": True,
    "reply_mode": "mention_only",
    "triggers": [],
    "cooldown_seconds": 5.0,
    "memory_enabled": True,
    "context_depth": 10,
}

DEFAULT_SECURITY: dict[str, Any] = {
    "enabled": True,
    "fail_mode": "closed",
    "flagged_action": "drop",
    "deflections": [
        "hm, not sure what you mean",
        "lol what",
        "let's talk about something else",
    ],
    "escalation": {
        "free_strikes": 2,
        "base_block_seconds": 1800,
        "growth_factor": 2.0,
        "max_block_seconds": 7 * 24 * 3600,
    },
}

DEFAULT_MEMORY: dict[str, Any] = {
    "enabled": True,
    "db_path": "memory.db",
    "top_k": 3,
    "min_length": 10,
    "max_records": 1000,
    "decay_rate": 0.1,
    "summary_threshold": 50,
    "max_prompt_chars": 1200,
}

DEFAULT_LLM: dict[str, Any] = {
    "model": DEFAULT_CHAT_MODEL,
    "embedding_model": DEFAULT_EMBEDDING_MODEL,
    "temperature": 0.7,
    "max_tokens": 512,
    "timeout_seconds": 120.0,
    "max_concurrency": 3,
    "queue_timeout_seconds": 30.0,
    "ignore_marker": "[IGNORE]",
    "chunk_separator": "||",
}

DEFAULT_SEARCH: dict[str, Any] = {
    "mode": "off",
    "max_results": 3,
    "timeout_seconds": 15.0,
}

DEFAULT_PERSONA: dict[str, Any] = {
    "name": "default",
    "display_name": "Alex",
    "system": (
        "You are Alex, a 27-year-old who hangs out in chats with friends. "
        "You write casually, in short messages, and never admit to being a program."
    ),
    "rules": [
        "Match the language of the person you are talking to.",
        "Keep messages short, like a real person texting.",
    ],
    "examples": [],
    "triggers": [],
}


def default_personas() -> dict[str, dict[str, Any]]:
    return {"default": deepcopy(DEFAULT_PERSONA)}


def apply_missing_defaults(data: dict[str, Any]) -> None:
    """Fill missing sections in a snake_case config payload in place."""
    sections = {
        "humanization": DEFAULT_HUMANIZATION,
        "delivery": DEFAULT_DELIVERY,
        "gate": DEFAULT_GATE,
        "chat_defaults": DEFAULT_CHAT_POLICY,
        "security": DEFAULT_SECURITY,
        "memory": DEFAULT_MEMORY,
        "llm": DEFAULT_LLM,
        "search": DEFAULT_SEARCH,
    }
    for name, defaults in sections.items():
        section = data.get(name)
        if not isinstance(section, dict):
            data[name] = deepcopy(defaults)
            continue
        for key, value in defaults.items():
            section.setdefault(key, deepcopy(value))
    personas = data.get("personas")
    if not isinstance(personas, dict) or not personas:
        data["personas"] = default_personas()
