"""Photo description so a persona can react to pictures sent in chat."""

from __future__ import annotations

import asyncio
import base64
import mimetypes
from pathlib import Path

from loguru import logger

_INSTRUCTION = (
    "Someone sent this picture in a chat. In one or two short sentences, say what it shows "
    "as a friend looking at it would. Quote any readable text. No preamble."
)


def _data_url(image_path: Path) -> str | None:
    mime, _ = mimetypes.guess_type(image_path.name)
    if mime is None or not mime.startswith("image/"):
        return None
    encoded = base64.b64encode(image_path.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


class VisionDescriber:
    """Turn a local image into a one-line description via ``litellm.acompletion``.

    Non-image files (an animation delivered as mp4, say) yield None.
    """

    def __init__(self, model: str, *, timeout_seconds: float = 30.0, max_tokens: int = 120) -> None:
        self.model = model
        self.timeout_seconds = max(1.0, float(timeout_seconds))
        self.max_tokens = max_tokens

    async def describe(self, image_path: Path) -> str | None:
        from litellm import acompletion

        url = _data_url(image_path)
        if url is None:
            logger.debug("vision_skipped path={} reason=not_an_image", image_path)
            return None

        response = await asyncio.wait_for(
            acompletion(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": _INSTRUCTION},
                            {"type": "image_url", "image_url": {"url": url}},
                        ],
                    }
                ],
                max_tokens=self.max_tokens,
                temperature=0.2,
            ),
            timeout=self.timeout_seconds,
        )
        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        description = " ".join(str(getattr(message, "content", "") or "").split())
        return description or None
