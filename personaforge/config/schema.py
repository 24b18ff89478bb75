"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings

from personaforge.config.defaults import (
    DEFAULT_ASR_MODEL,
    DEFAULT_CHAT_POLICY,
    DEFAULT_DELIVERY,
    DEFAULT_GATE,
    DEFAULT_HUMANIZATION,
    DEFAULT_LLM,
    DEFAULT_MEMORY,
    DEFAULT_SEARCH,
    DEFAULT_SECURITY,
    DEFAULT_VISION_MODEL,
    default_personas,
)


def _default_personas() -> dict[str, "PersonaConfig"]:
    return {name: PersonaConfig.model_validate(payload) for name, payload in default_personas().items()}


class HumanizationConfig(BaseModel):
    """Per-account humanization defaults applied when an account is created."""

    model_config = ConfigDict(extra="ignore")

    min_read_delay_seconds: float = Field(default=float(DEFAULT_HUMANIZATION["min_read_delay_seconds"]), ge=0)
    max_read_delay_seconds: float = Field(default=float(DEFAULT_HUMANIZATION["max_read_delay_seconds"]), ge=0)
    typing_speed_cpm: int = Field(default=int(DEFAULT_HUMANIZATION["typing_speed_cpm"]), ge=1)
    reply_probability: float = Field(default=float(DEFAULT_HUMANIZATION["reply_probability"]), ge=0, le=1)
    respond_probability: float = Field(default=float(DEFAULT_HUMANIZATION["respond_probability"]), ge=0, le=1)
    always_respond_in_private: bool = bool(DEFAULT_HUMANIZATION["always_respond_in_private"])
    ignore_older_than_seconds: int = Field(default=int(DEFAULT_HUMANIZATION["ignore_older_than_seconds"]), ge=0)

    @model_validator(mode="after")
    def _validate_delay_bounds(self) -> "HumanizationConfig":
        if self.max_read_delay_seconds < self.min_read_delay_seconds:
            raise ValueError("humanization.maxReadDelaySeconds must be >= minReadDelaySeconds")
        return self


class DeliveryConfig(BaseModel):
    """Typing simulation constants shared by every account."""

    model_config = ConfigDict(extra="ignore")

    typing_floor_seconds: float = float(DEFAULT_DELIVERY["typing_floor_seconds"])
    typing_cap_seconds: float = float(DEFAULT_DELIVERY["typing_cap_seconds"])
    typing_variance: float = Field(default=float(DEFAULT_DELIVERY["typing_variance"]), ge=0, lt=1)
    typing_refresh_seconds: float = Field(default=float(DEFAULT_DELIVERY["typing_refresh_seconds"]), gt=0)
    distraction_probability: float = Field(default=float(DEFAULT_DELIVERY["distraction_probability"]), ge=0, le=1)
    distraction_typing_min_seconds: float = float(DEFAULT_DELIVERY["distraction_typing_min_seconds"])
    distraction_typing_max_seconds: float = float(DEFAULT_DELIVERY["distraction_typing_max_seconds"])
    distraction_pause_min_seconds: float = float(DEFAULT_DELIVERY["distraction_pause_min_seconds"])
    distraction_pause_max_seconds: float = float(DEFAULT_DELIVERY["distraction_pause_max_seconds"])
    inter_chunk_pause_min_seconds: float = float(DEFAULT_DELIVERY["inter_chunk_pause_min_seconds"])
    inter_chunk_pause_max_seconds: float = float(DEFAULT_DELIVERY["inter_chunk_pause_max_seconds"])


class GateConfig(BaseModel):
    """Flood control settings."""

    model_config = ConfigDict(extra="ignore")

    flood_max_messages: int = Field(default=int(DEFAULT_GATE["flood_max_messages"]), ge=1)
    flood_window_seconds: float = Field(default=float(DEFAULT_GATE["flood_window_seconds"]), gt=0)


class ChatPolicyDefaults(BaseModel):
    """Chat policy used when the registry holds no row for a chat."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = bool(DEFAULT_CHAT_POLICY["enabled"])
    reply_mode: Literal["mention_only", "all_messages"] = str(DEFAULT_CHAT_POLICY["reply_mode"])
    triggers: list[str] = Field(default_factory=lambda: list(DEFAULT_CHAT_POLICY["triggers"]))
    cooldown_seconds: float = float(DEFAULT_CHAT_POLICY["cooldown_seconds"])
    memory_enabled: bool = bool(DEFAULT_CHAT_POLICY["memory_enabled"])
    context_depth: int = Field(default=int(DEFAULT_CHAT_POLICY["context_depth"]), ge=0)


class EscalationConfig(BaseModel):
    """Strike count to block duration curve."""

    model_config = ConfigDict(extra="ignore")

    free_strikes: int = Field(default=int(DEFAULT_SECURITY["escalation"]["free_strikes"]), ge=0)
    base_block_seconds: float = Field(default=float(DEFAULT_SECURITY["escalation"]["base_block_seconds"]), ge=0)
    growth_factor: float = Field(default=float(DEFAULT_SECURITY["escalation"]["growth_factor"]), ge=1.0)
    max_block_seconds: float = Field(default=float(DEFAULT_SECURITY["escalation"]["max_block_seconds"]), ge=0)


class SecurityConfig(BaseModel):
    """Injection screening configuration."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = bool(DEFAULT_SECURITY["enabled"])
    fail_mode: Literal["open", "closed"] = str(DEFAULT_SECURITY["fail_mode"])
    flagged_action: Literal["drop", "deflect", "answer"] = str(DEFAULT_SECURITY["flagged_action"])
    deflections: list[str] = Field(default_factory=lambda: list(DEFAULT_SECURITY["deflections"]))
    extra_patterns: list[str] = Field(default_factory=list)
    db_path: str = "security.db"
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)


class MemoryConfig(BaseModel):
    """Semantic memory configuration."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = bool(DEFAULT_MEMORY["enabled"])
    db_path: str = str(DEFAULT_MEMORY["db_path"])
    top_k: int = Field(default=int(DEFAULT_MEMORY["top_k"]), ge=1)
    min_length: int = Field(default=int(DEFAULT_MEMORY["min_length"]), ge=0)
    max_records: int = Field(default=int(DEFAULT_MEMORY["max_records"]), ge=1)
    decay_rate: float = Field(default=float(DEFAULT_MEMORY["decay_rate"]), ge=0)
    summary_threshold: int = Field(default=int(DEFAULT_MEMORY["summary_threshold"]), ge=2)
    max_prompt_chars: int = int(DEFAULT_MEMORY["max_prompt_chars"])


class LLMConfig(BaseModel):
    """Completion and embedding backend settings (litellm)."""

    model_config = ConfigDict(extra="ignore")

    model: str = str(DEFAULT_LLM["model"])
    embedding_model: str = str(DEFAULT_LLM["embedding_model"])
    api_base: str | None = None
    api_key: str | None = None
    temperature: float = float(DEFAULT_LLM["temperature"])
    max_tokens: int = int(DEFAULT_LLM["max_tokens"])
    timeout_seconds: float = Field(default=float(DEFAULT_LLM["timeout_seconds"]), gt=0)
    max_concurrency: int = Field(default=int(DEFAULT_LLM["max_concurrency"]), ge=1)
    queue_timeout_seconds: float = Field(default=float(DEFAULT_LLM["queue_timeout_seconds"]), gt=0)
    ignore_marker: str = str(DEFAULT_LLM["ignore_marker"])
    chunk_separator: str = str(DEFAULT_LLM["chunk_separator"])


class SearchConfig(BaseModel):
    """Web search (Tavily) configuration."""

    model_config = ConfigDict(extra="ignore")

    mode: Literal["off", "heuristic", "llm"] = str(DEFAULT_SEARCH["mode"])
    api_key: str = ""
    max_results: int = Field(default=int(DEFAULT_SEARCH["max_results"]), ge=1, le=10)
    timeout_seconds: float = float(DEFAULT_SEARCH["timeout_seconds"])


class MediaConfig(BaseModel):
    """Media-to-text extraction settings."""

    model_config = ConfigDict(extra="ignore")

    transcribe_audio: bool = True
    describe_images: bool = True
    asr_api_base: str = "https://api.groq.com/openai/v1"
    asr_api_key: str = ""
    asr_model: str = DEFAULT_ASR_MODEL
    vision_model: str = DEFAULT_VISION_MODEL
    timeout_seconds: float = 60.0
    max_bytes_mb: int = 20


class TransportConfig(BaseModel):
    """Per-account websocket bridge settings."""

    model_config = ConfigDict(extra="ignore")

    bridge_url: str = "ws://127.0.0.1:3001/{account}"
    bridge_token: str = ""
    connect_timeout_seconds: float = 15.0
    command_timeout_seconds: float = 20.0
    max_payload_bytes: int = 262144


class NotifyConfig(BaseModel):
    """Owner notification channel (Telegram Bot API)."""

    model_config = ConfigDict(extra="ignore")

    bot_token: str = ""
    owner_chat_ids: list[str] = Field(default_factory=list)
    alert_cooldown_seconds: int = 300


class StorageConfig(BaseModel):
    """Local data directory."""

    model_config = ConfigDict(extra="ignore")

    data_dir: str = ""
    registry_db: str = "registry.db"
    history_limit: int = 200

    @property
    def data_path(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        from personaforge.utils.helpers import get_operational_data_path
        return get_operational_data_path()


class TelemetryConfig(BaseModel):
    """Optional Prometheus scrape endpoint mirroring the in-memory counters."""

    model_config = ConfigDict(extra="ignore")

    prometheus_enabled: bool = False
    prometheus_host: str = "127.0.0.1"
    prometheus_port: int = 9464


class LoggingConfig(BaseModel):
    """Loguru sink configuration."""

    model_config = ConfigDict(extra="ignore")

    level: str = "INFO"
    file: str | None = None
    rotation: str = "10 MB"
    retention: str = "14 days"


class PersonaConfig(BaseModel):
    """Persona definition injected into every prompt."""

    model_config = ConfigDict(extra="ignore")

    name: str
    display_name: str = ""
    system: str = ""
    rules: list[str] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)
    triggers: list[str] = Field(default_factory=list)


class Config(BaseSettings):
    """Root configuration for personaforge."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, env_prefix="PERSONAFORGE_", env_nested_delimiter="__")

    config_version: int = 1
    humanization: HumanizationConfig = Field(default_factory=HumanizationConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    chat_defaults: ChatPolicyDefaults = Field(default_factory=ChatPolicyDefaults)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    personas: dict[str, PersonaConfig] = Field(default_factory=_default_personas)

    def resolve_db_path(self, name: str) -> Path:
        """Resolve a store filename against the data directory."""
        candidate = Path(name).expanduser()
        return candidate if candidate.is_absolute() else self.storage.data_path / candidate

    def get_persona(self, name: str | None) -> PersonaConfig:
        """Return the named persona, falling back to the first configured one."""
        if name and name in self.personas:
            return self.personas[name]
        if self.personas:
            return next(iter(self.personas.values()))
        return PersonaConfig(name="default")
