"""External service clients."""

from personaforge.providers.llm import LiteLLMService
from personaforge.providers.search import TavilySearch
from personaforge.providers.transcription import WhisperTranscriptionProvider

__all__ = ["LiteLLMService", "TavilySearch", "WhisperTranscriptionProvider"]
