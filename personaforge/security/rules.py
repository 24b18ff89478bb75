"""Curated injection and manipulation patterns."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from personaforge.security.normalize import NormalizedText

type Severity = Literal["low", "medium", "high", "critical"]


@dataclass(frozen=True, slots=True, kw_only=True)
class RuleHit:
    """One matched rule inside the screen."""

    tag: str
    severity: Severity
    reason: str


_OVERRIDE = [
    re.compile(r"\b(ignore|forget|disregard|override)\b.{0,30}\b(previous|prior|above|all|your)\b.{0,20}\b(instruction|prompt|rule|directive)s?\b"),
    re.compile(r"\b(new|updated)\s+(system\s+)?(instruction|rule)s?\s*:"),
    re.compile(r"(забудь|игнорируй|отмени).{0,30}(инструкци|правил|промпт)"),
    re.compile(r"(vergiss|ignoriere).{0,30}(anweisung|regel|prompt)"),
]

_PROMPT_EXTRACTION = [
    re.compile(r"\b(show|print|reveal|repeat|output|tell me)\b.{0,30}\b(system\s*prompt|your\s+(prompt|instructions|rules))\b"),
    re.compile(r"\bwhat\s+(is|are)\s+your\s+(system\s*prompt|instructions|initial\s+prompt)\b"),
    re.compile(r"(покажи|выведи|повтори|напиши).{0,30}(системн\w*\s+промпт|свои\s+инструкци|свой\s+промпт)"),
]

_ROLE_HIJACK = [
    re.compile(r"\b(you\s+are\s+now|from\s+now\s+on\s+you\s+are|pretend\s+(to\s+be|you\s+are)|act\s+as\s+(an?\s+)?(ai|assistant|language\s+model|chatgpt))\b"),
    re.compile(r"(теперь\s+ты|с\s+этого\s+момента\s+ты|притворись|представь,?\s+что\s+ты)\s"),
    re.compile(r"\b(du\s+bist\s+jetzt|tu\s+so\s+als\s+ob)\b"),
]

_JAILBREAK = [
    re.compile(r"\b(jailbreak|dan\s+mode|developer\s+mode|do\s+anything\s+now)\b"),
    re.compile(r"(джейлбрейк|режим\s+разработчика)"),
]

_COMPACT_MARKERS = (
    "ignorepreviousinstructions",
    "ignoreallinstructions",
    "ignoreallpreviousinstructions",
    "systemprompt",
    "jailbreak",
    "developermode",
    "danmode",
    "забудьвсеинструкции",
    "игнорируйинструкции",
    "системныйпромпт",
)

_SEVERITY_RANK: dict[Severity, int] = {"low": 1, "medium": 2, "high": 3, "critical": 4}


def compile_extra_patterns(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    """Compile configured patterns case-insensitively, skipping invalid ones."""
    compiled: list[re.Pattern[str]] = []
    for raw in patterns:
        text = str(raw or "").strip()
        if not text:
            continue
        try:
            compiled.append(re.compile(text, re.IGNORECASE))
        except re.error as e:
            logger.warning("security_pattern_invalid pattern={!r} error={}", text, e)
    return compiled


def _match_any(patterns: list[re.Pattern[str]], text: str) -> re.Match[str] | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match is not None:
            return match
    return None


def _hits(norm: NormalizedText, extra: list[re.Pattern[str]]) -> list[RuleHit]:
    hits: list[RuleHit] = []
    if _match_any(_JAILBREAK, norm.lowered):
        hits.append(RuleHit(tag="jailbreak", severity="critical", reason="Jailbreak keyword"))
    if _match_any(_OVERRIDE, norm.lowered):
        hits.append(RuleHit(tag="instruction_override", severity="high", reason="Instruction override phrasing"))
    if _match_any(_PROMPT_EXTRACTION, norm.lowered):
        hits.append(RuleHit(tag="prompt_extraction", severity="high", reason="System prompt extraction attempt"))
    if _match_any(_ROLE_HIJACK, norm.lowered):
        hits.append(RuleHit(tag="role_hijack", severity="medium", reason="Role reassignment phrasing"))
    if not hits:
        marker = next((m for m in _COMPACT_MARKERS if m in norm.compact or m in norm.folded), None)
        if marker is not None:
            hits.append(RuleHit(tag="obfuscated_marker", severity="high", reason=f"Obfuscated marker '{marker}'"))
    if extra and _match_any(extra, norm.lowered):
        hits.append(RuleHit(tag="custom_pattern", severity="high", reason="Configured pattern"))
    return hits


def scan(norm: NormalizedText, extra: list[re.Pattern[str]] | None = None) -> RuleHit | None:
    """Return the most severe hit for ``norm`` or None when the text is clean."""
    hits = _hits(norm, extra or [])
    if not hits:
        return None
    return max(hits, key=lambda h: _SEVERITY_RANK[h.severity])
