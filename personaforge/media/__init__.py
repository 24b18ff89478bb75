"""Media extraction helpers."""

from personaforge.media.extractor import MediaExtractor
from personaforge.media.vision import VisionDescriber

__all__ = ["MediaExtractor", "VisionDescriber"]
