"""Process-wide LLM concurrency limit with FIFO waiters."""

from __future__ import annotations

import asyncio
from collections import deque

from loguru import logger

from personaforge.core.errors import GenerationFailed, GenerationTimeout
from personaforge.core.ports import CompletionPort


class FairLimiter:
    """Counting semaphore that hands freed slots to waiters in arrival order.

    ``acquire`` raises ``TimeoutError`` when no slot is granted within the
    queue timeout. A slot granted at the same moment the wait times out is
    returned so it is never leaked.
    """

    def __init__(self, limit: int, *, queue_timeout: float) -> None:
        self._limit = max(1, int(limit))
        self._queue_timeout = float(queue_timeout)
        self._in_flight = 0
        self._peak = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak(self) -> int:
        return self._peak

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def _take(self) -> None:
        self._in_flight += 1
        self._peak = max(self._peak, self._in_flight)

    async def acquire(self) -> None:
        if self._in_flight < self._limit and not self.waiting:
            self._take()
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter, timeout=self._queue_timeout)
        except BaseException:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just as we gave up.
                self.release()
            else:
                waiter.cancel()
            try:
                self._waiters.remove(waiter)
            except ValueError:
                pass
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            # Hand the slot over directly; in_flight stays the same.
            waiter.set_result(None)
            return
        if self._in_flight <= 0:
            raise RuntimeError("FairLimiter released more times than acquired")
        self._in_flight -= 1


class LimitedCompletion:
    """Completion port wrapper that holds one limiter slot per call.

    The provider call runs in its own task. If the caller is cancelled the
    task keeps running and frees the slot when it finishes or times out.
    """

    def __init__(self, llm: CompletionPort, limiter: FairLimiter, *, timeout_seconds: float) -> None:
        self._llm = llm
        self._limiter = limiter
        self._timeout_seconds = float(timeout_seconds)
        self._tasks: set[asyncio.Task[str]] = set()

    @property
    def limiter(self) -> FairLimiter:
        return self._limiter

    async def complete(self, prompt: str) -> str:
        try:
            await self._limiter.acquire()
        except TimeoutError as e:
            raise GenerationTimeout(
                f"no LLM slot within queue timeout (limit={self._limiter.limit})"
            ) from e

        task = asyncio.create_task(self._run_holding_slot(prompt))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return await asyncio.shield(task)

    async def _run_holding_slot(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(self._llm.complete(prompt), timeout=self._timeout_seconds)
        except TimeoutError as e:
            raise GenerationTimeout(f"completion exceeded {self._timeout_seconds:.0f}s") from e
        except (GenerationFailed, GenerationTimeout):
            raise
        except Exception as e:
            raise GenerationFailed(f"{e.__class__.__name__}: {e}") from e
        finally:
            self._limiter.release()

    def _on_done(self, task: asyncio.Task[str]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("llm_call_finished_with_error error={}", error)
