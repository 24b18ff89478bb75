"""Completion and embedding client using LiteLLM."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from personaforge.core.errors import GenerationFailed

if TYPE_CHECKING:
    from personaforge.config.schema import LLMConfig


class LiteLLMService:
    """Single-prompt completion and text embedding through LiteLLM.

    Timeouts are enforced by the caller (the limiter); this class only
    forwards provider errors as ``GenerationFailed``.
    """

    def __init__(self, config: "LLMConfig") -> None:
        self._config = config

    @property
    def model(self) -> str:
        return self._config.model

    def _common_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base
        if self._config.api_key:
            kwargs["api_key"] = self._config.api_key
        return kwargs

    async def complete(self, prompt: str) -> str:
        from litellm import acompletion

        try:
            response = await acompletion(
                model=self._config.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
                **self._common_kwargs(),
            )
        except Exception as e:
            raise GenerationFailed(f"{e.__class__.__name__}: {e}") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise GenerationFailed("completion returned no choices")
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None) if message is not None else None
        return str(content or "")

    async def embed(self, text: str) -> list[float]:
        from litellm import aembedding

        compact = " ".join(text.split()).strip()
        if not compact:
            return []
        response = await aembedding(
            model=self._config.embedding_model,
            input=[compact],
            **self._common_kwargs(),
        )
        data = getattr(response, "data", None)
        if not data:
            logger.debug("embedding returned no data model={}", self._config.embedding_model)
            return []
        vector = data[0].get("embedding") if isinstance(data[0], dict) else None
        if vector is None:
            vector = getattr(data[0], "embedding", None)
        if not isinstance(vector, list):
            return []
        return [float(v) for v in vector]
