"""Rendering helpers for memory prompt context."""

from __future__ import annotations

from datetime import UTC, datetime

from personaforge.core.models import MemoryHit
from personaforge.utils.helpers import compact_text


def render_memory_hits(hits: list[MemoryHit], max_chars: int = 1200) -> str:
    """Render bounded memory text for prompt injection."""
    if not hits:
        return ""

    lines = [
        "[Retrieved Memory]",
        "Things you remember from earlier in this chat. Use them naturally, never quote them.",
    ]

    for hit in hits:
        record = hit.record
        day = datetime.fromtimestamp(record.created_at, tz=UTC).strftime("%Y-%m-%d")
        label = "summary" if record.kind == "summary" else "message"
        line = f"- ({label} {day} score={hit.score:.2f}) {compact_text(record.text, 240)}"
        candidate = "\n".join(lines + [line])
        if len(candidate) > max_chars:
            break
        lines.append(line)

    if len(lines) == 2:
        return ""
    return "\n".join(lines)
