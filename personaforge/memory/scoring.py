"""Pure similarity and decay scoring for memory retrieval."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from personaforge.core.models import MemoryHit, MemoryRecord


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float | None:
    """Cosine of two vectors, or None when either is empty, zero-norm or the sizes differ."""
    if not a or not b or len(a) != len(b):
        return None
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a <= 0.0 or norm_b <= 0.0:
        return None
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def decay_factor(age_hours: float, decay_rate: float) -> float:
    """``exp(-decay_rate * age_days)``; negative ages count as zero."""
    return math.exp(-decay_rate * max(0.0, age_hours) / 24.0)


def score(query: Sequence[float], vector: Sequence[float] | None, age_hours: float, decay_rate: float) -> float | None:
    """Decayed similarity of one record, or None when it cannot be scored."""
    if vector is None:
        return None
    similarity = cosine_similarity(query, vector)
    if similarity is None:
        return None
    return similarity * decay_factor(age_hours, decay_rate)


def rank(
    query: Sequence[float],
    records: Iterable[MemoryRecord],
    *,
    now: float,
    decay_rate: float,
    k: int,
) -> list[MemoryHit]:
    """Top ``k`` records by decayed similarity; ties go to the newer record."""
    if k <= 0:
        return []
    hits: list[MemoryHit] = []
    for record in records:
        if record.embedding is None:
            continue
        similarity = cosine_similarity(query, record.embedding)
        if similarity is None:
            continue
        age_hours = (now - record.created_at) / 3600.0
        importance = decay_factor(age_hours, decay_rate)
        hits.append(
            MemoryHit(
                record=record,
                score=similarity * importance,
                similarity=similarity,
                importance=importance,
            )
        )
    hits.sort(key=lambda h: (h.score, h.record.created_at, h.record.record_id), reverse=True)
    return hits[:k]
