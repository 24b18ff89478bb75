"""Wall-clock time source."""

from __future__ import annotations

import asyncio
import time


class SystemClock:
    """Real time: epoch seconds and ``asyncio.sleep``."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))
