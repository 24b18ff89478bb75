"""Normalization helpers for injection screening."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

_ZERO_WIDTH = {
    "\u200b",  # zero width space
    "\u200c",  # zero width non-joiner
    "\u200d",  # zero width joiner
    "\ufeff",  # byte order mark
    "\u2060",  # word joiner
    "\u00ad",  # soft hyphen
}

# Cyrillic letters that render like Latin ones; used only for the folded view.
_HOMOGLYPHS = str.maketrans(
    {
        "а": "a",
        "е": "e",
        "о": "o",
        "р": "p",
        "с": "c",
        "у": "y",
        "х": "x",
        "і": "i",
        "к": "k",
        "м": "m",
        "т": "t",
        "в": "b",
        "н": "h",
    }
)

_LEET = str.maketrans({"0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "7": "t", "@": "a", "$": "s"})

_SEPARATORS = re.compile(r"[\s\-+_`'\".,:;|/\\*~]+")


@dataclass(frozen=True, slots=True)
class NormalizedText:
    """Precomputed normalized views of one text payload."""

    original: str
    lowered: str
    compact: str
    folded: str


def normalize_text(text: str) -> NormalizedText:
    """Normalize text to reduce simple obfuscation tricks.

    - Unicode NFKC canonicalization
    - zero-width character removal
    - whitespace collapsing
    - lowercase view
    - compact view without separators for split-token bypasses
    - folded view with homoglyphs and leetspeak mapped to Latin letters
    """
    raw = text or ""
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = "".join(ch for ch in normalized if ch not in _ZERO_WIDTH)
    normalized = re.sub(r"\s+", " ", normalized).strip()

    lowered = normalized.lower()
    compact = _SEPARATORS.sub("", lowered)
    folded = compact.translate(_LEET).translate(_HOMOGLYPHS)
    return NormalizedText(original=raw, lowered=lowered, compact=compact, folded=folded)
