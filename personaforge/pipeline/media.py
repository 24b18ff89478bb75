"""Media middleware: attach extracted text to non-text events."""

from __future__ import annotations

from dataclasses import replace

from loguru import logger

from personaforge.core.pipeline import NextFn, PipelineContext
from personaforge.core.ports import MediaExtractorPort
from personaforge.security.screen import SecurityScreen


class MediaMiddleware:
    """Ask the extractor for text when the transport did not provide it.

    Blocked senders are never sent to the extraction backends; the security
    stage drops their turn. Extraction failure keeps only the media kind and
    the turn continues.
    """

    def __init__(self, *, extractor: MediaExtractorPort | None = None, screen: SecurityScreen | None = None) -> None:
        self._extractor = extractor
        self._screen = screen

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        event = ctx.event
        if self._extractor is None or event.kind == "text" or event.media_text:
            await next(ctx)
            return

        if self._screen is not None and self._screen.is_blocked(event.account_id, event.sender_id):
            logger.debug("media_skipped account={} sender={} reason=blocked", event.account_id, event.sender_id)
            await next(ctx)
            return

        try:
            text = await self._extractor.extract(event)
        except Exception as e:
            logger.warning("media_extract_failed account={} kind={} error={}", event.account_id, event.kind, e)
            text = None

        if text:
            ctx.event = replace(event, media_text=text.strip())
            ctx.metric("media_extracted", labels=(("kind", event.kind),))
        else:
            ctx.metric("media_unextracted", labels=(("kind", event.kind),))
        await next(ctx)
