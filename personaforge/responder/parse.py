"""Post-processing of raw completions into a turn outcome."""

from __future__ import annotations

import re

from personaforge.core.models import Chunks, DecisionOutcome, Suppress


def parse_completion(
    raw: str,
    *,
    ignore_marker: str = "[IGNORE]",
    separator: str = "||",
    speaker: str | None = None,
) -> DecisionOutcome:
    """Turn model output into ``Suppress`` or ordered non-empty ``Chunks``.

    The ignore marker is matched case-insensitively. A leading ``speaker:``
    echo of the persona name is dropped from each chunk.
    """
    text = (raw or "").strip()
    if not text:
        return Suppress("empty")

    marker_re = re.compile(re.escape(ignore_marker), re.IGNORECASE) if ignore_marker else None
    if marker_re is not None and marker_re.fullmatch(text):
        return Suppress("ignore_marker")

    speaker_re = re.compile(rf"^\s*{re.escape(speaker)}\s*:\s*", re.IGNORECASE) if speaker else None
    parts = text.split(separator) if separator else [text]
    chunks: list[str] = []
    for part in parts:
        cleaned = marker_re.sub("", part) if marker_re is not None else part
        if speaker_re is not None:
            cleaned = speaker_re.sub("", cleaned)
        cleaned = cleaned.strip()
        if cleaned:
            chunks.append(cleaned)

    if not chunks:
        return Suppress("ignore_marker" if marker_re is not None and marker_re.search(text) else "empty")
    return Chunks(tuple(chunks))
