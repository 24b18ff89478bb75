"""Voice note transcription over an OpenAI-compatible Whisper endpoint."""

import os
from pathlib import Path

import httpx
from loguru import logger


class WhisperTranscriptionProvider:
    """POST audio to ``{api_base}/audio/transcriptions`` and return the text.

    Groq is the default backend; OpenAI or a local whisper server work by
    changing ``api_base``. HTTP and network errors propagate to the caller.
    Without a key the provider is inert and returns an empty string.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        api_base: str = "https://api.groq.com/openai/v1",
        model: str = "whisper-large-v3",
        timeout_seconds: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key or os.environ.get("GROQ_API_KEY") or os.environ.get("OPENAI_API_KEY") or ""
        self.endpoint = f"{api_base.rstrip('/')}/audio/transcriptions"
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def transcribe(self, file_path: str | Path) -> str:
        if not self.configured:
            logger.debug("transcription_skipped reason=no_api_key")
            return ""

        audio = Path(file_path)
        form = {"model": (None, self.model), "response_format": (None, "json")}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        with audio.open("rb") as fh:
            form["file"] = (audio.name, fh)
            if self._client is not None:
                response = await self._client.post(
                    self.endpoint, headers=headers, files=form, timeout=self.timeout_seconds
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.endpoint, headers=headers, files=form, timeout=self.timeout_seconds
                    )
        response.raise_for_status()
        text = " ".join(str(response.json().get("text") or "").split())
        logger.debug("transcribed path={} chars={}", audio.name, len(text))
        return text
