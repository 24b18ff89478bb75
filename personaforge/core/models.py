"""Domain models for the per-account message pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

type AccountId = str
type ChatId = str
type SenderId = str
type MessageId = str
type AccountState = Literal["stopped", "starting", "running", "faulted"]
type ContentKind = Literal["text", "voice", "photo", "animation", "video_note", "sticker"]
type ReplyMode = Literal["mention_only", "all_messages"]
type SendMode = Literal["as_reply", "standalone"]
type DropReason = Literal["stale", "not_eligible", "rate_limited", "blocked", "flagged"]
type ScreenVerdict = Literal["clear", "flagged", "blocked"]
type DeliveryState = Literal[
    "pending_read",
    "reading",
    "typing_start",
    "typing_steady",
    "distracted",
    "typing_done",
    "sent",
]
type MemoryKind = Literal["message", "summary"]
type HistoryRole = Literal["user", "assistant"]


@dataclass(frozen=True, slots=True, kw_only=True)
class HumanizationSettings:
    """Per-account timing and reply behavior."""

    min_read_delay_seconds: float = 5.0
    max_read_delay_seconds: float = 60.0
    typing_speed_cpm: int = 200
    reply_probability: float = 0.7
    respond_probability: float = 1.0
    always_respond_in_private: bool = True
    ignore_older_than_seconds: int = 300


@dataclass(frozen=True, slots=True, kw_only=True)
class Account:
    """One automated chat identity."""

    account_id: AccountId
    username: str = ""
    persona: str = "default"
    humanization: HumanizationSettings = field(default_factory=HumanizationSettings)
    state: AccountState = "stopped"
    active: bool = True


@dataclass(frozen=True, slots=True, kw_only=True)
class ChatPolicy:
    """Per (account, chat) behavior settings."""

    account_id: AccountId
    chat_id: ChatId
    enabled: bool = True
    reply_mode: ReplyMode = "mention_only"
    triggers: tuple[str, ...] = ()
    cooldown_seconds: float = 5.0
    memory_enabled: bool = True
    context_depth: int = 10


@dataclass(frozen=True, slots=True, kw_only=True)
class InboundEvent:
    """One inbound chat event as delivered by the transport."""

    account_id: AccountId
    chat_id: ChatId
    sender_id: SenderId
    message_id: MessageId | None
    timestamp: float
    text: str = ""
    kind: ContentKind = "text"
    is_private: bool = False
    sender_name: str = ""
    mentions_self: bool = False
    reply_to_self: bool = False
    media_path: str | None = None
    media_text: str | None = None

    @property
    def content(self) -> str:
        """Text the pipeline reasons about: caption/text plus extracted media text."""
        parts = [part for part in (self.text.strip(), (self.media_text or "").strip()) if part]
        return "\n".join(parts)


@dataclass(frozen=True, slots=True, kw_only=True)
class MemoryRecord:
    """Embedding-indexed snippet of past conversation."""

    record_id: int
    account_id: AccountId
    chat_id: ChatId
    text: str
    embedding: tuple[float, ...] | None
    created_at: float
    importance: float = 1.0
    kind: MemoryKind = "message"


@dataclass(frozen=True, slots=True, kw_only=True)
class MemoryHit:
    """One scored retrieval result."""

    record: MemoryRecord
    score: float
    similarity: float
    importance: float


@dataclass(frozen=True, slots=True, kw_only=True)
class MemorySummary:
    """Digest row replacing a span of older records."""

    account_id: AccountId
    chat_id: ChatId
    span_from: float
    span_to: float
    message_count: int
    text: str


@dataclass(frozen=True, slots=True, kw_only=True)
class SecurityState:
    """Strike ledger entry for one sender as seen by one account."""

    account_id: AccountId
    sender_id: SenderId
    strikes: int = 0
    last_violation_at: float | None = None
    blocked_until: float | None = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and self.blocked_until > now


@dataclass(frozen=True, slots=True, kw_only=True)
class AdmissionResult:
    """Gate outcome. ``trigger`` names why an accepted event qualified."""

    accepted: bool
    reason: DropReason | None = None
    trigger: str = ""
    detail: str = ""


@dataclass(frozen=True, slots=True, kw_only=True)
class ScreenResult:
    """Security screen outcome."""

    verdict: ScreenVerdict
    pattern: str | None = None
    blocked_until: float | None = None
    strikes: int = 0


@dataclass(frozen=True, slots=True, kw_only=True)
class HistoryTurn:
    """One line of recent conversation used for prompt context."""

    role: HistoryRole
    sender_name: str
    text: str
    created_at: float


@dataclass(frozen=True, slots=True, kw_only=True)
class SearchResult:
    title: str
    snippet: str
    url: str


@dataclass(frozen=True, slots=True)
class Suppress:
    """No reply for this turn."""

    reason: str = "ignore_marker"


@dataclass(frozen=True, slots=True)
class Chunks:
    """Ordered non-empty outbound texts."""

    texts: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.texts:
            raise ValueError("Chunks requires at least one text")


type DecisionOutcome = Suppress | Chunks


@dataclass(frozen=True, slots=True, kw_only=True)
class Distraction:
    """Mid-typing interruption: type ``after_seconds``, go idle for ``pause_seconds``."""

    after_seconds: float
    pause_seconds: float


@dataclass(frozen=True, slots=True, kw_only=True)
class ChunkPlan:
    text: str
    read_delay_seconds: float
    typing_seconds: float
    pause_before_seconds: float = 0.0
    distraction: Distraction | None = None

    @property
    def planned_seconds(self) -> float:
        total = self.pause_before_seconds + self.read_delay_seconds + self.typing_seconds
        if self.distraction is not None:
            total += self.distraction.pause_seconds
        return total


@dataclass(frozen=True, slots=True, kw_only=True)
class DeliveryPlan:
    """Timing for every chunk of one turn plus the turn-wide send mode."""

    chunks: tuple[ChunkPlan, ...]
    send_mode: SendMode
    reply_to_message_id: MessageId | None = None
