"""Media-to-text extraction for non-text inbound events."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from personaforge.core.models import InboundEvent
from personaforge.media.vision import VisionDescriber
from personaforge.providers.transcription import WhisperTranscriptionProvider

if TYPE_CHECKING:
    from personaforge.config.schema import MediaConfig

_AUDIO_KINDS = frozenset({"voice", "video_note"})
_IMAGE_KINDS = frozenset({"photo", "animation"})


class MediaExtractor:
    """Transcribe voice/video notes and describe photos/animations.

    Failures yield None; the pipeline then only knows the media kind.
    """

    def __init__(
        self,
        config: "MediaConfig",
        *,
        transcriber: WhisperTranscriptionProvider | None = None,
        describer: VisionDescriber | None = None,
    ) -> None:
        self._config = config
        self._transcriber = transcriber
        self._describer = describer

    def _validated_path(self, event: InboundEvent) -> Path | None:
        if not event.media_path:
            return None
        path = Path(event.media_path).expanduser()
        try:
            size_bytes = path.stat().st_size
        except OSError:
            logger.warning("media_missing account={} path={}", event.account_id, path)
            return None
        max_bytes = max(1, int(self._config.max_bytes_mb)) * 1024 * 1024
        if size_bytes > max_bytes:
            logger.info("media_too_large path={} bytes={} limit={}", path, size_bytes, max_bytes)
            return None
        return path

    async def extract(self, event: InboundEvent) -> str | None:
        if event.kind in _AUDIO_KINDS:
            if not self._config.transcribe_audio or self._transcriber is None:
                return None
            path = self._validated_path(event)
            if path is None:
                return None
            try:
                text = await self._transcriber.transcribe(path)
            except Exception as e:
                logger.warning("transcription_failed account={} kind={} error={}", event.account_id, event.kind, e)
                return None
            return text or None

        if event.kind in _IMAGE_KINDS:
            if not self._config.describe_images or self._describer is None:
                return None
            path = self._validated_path(event)
            if path is None:
                return None
            try:
                return await self._describer.describe(path)
            except Exception as e:
                logger.warning("vision_failed account={} kind={} error={}", event.account_id, event.kind, e)
                return None

        return None
