"""Account worker: one transport session, one pipeline, strict event order."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

from loguru import logger

from personaforge.core.errors import TransportClosed, WorkerFault
from personaforge.core.models import Account, AccountState, ChatPolicy, InboundEvent
from personaforge.core.pipeline import Pipeline, PipelineContext
from personaforge.core.ports import TelemetryPort, TransportPort

FaultHandler = Callable[[WorkerFault], Awaitable[None]]
StateHandler = Callable[[str, AccountState], None]


class AccountWorker:
    """Run inbound events for one account through its pipeline.

    A pump task copies transport events into a bounded queue and a single
    consumer task runs one turn at a time, so two events of the same account
    never interleave. A closed transport or an exception escaping the
    pipeline moves the worker to ``faulted`` and reports it; the worker is
    never restarted automatically.
    """

    def __init__(
        self,
        *,
        account: Account,
        transport: TransportPort,
        pipeline: Pipeline,
        policy_for: Callable[[str, str], ChatPolicy],
        account_loader: Callable[[str], Account | None] | None = None,
        telemetry: TelemetryPort | None = None,
        on_fault: FaultHandler | None = None,
        on_state: StateHandler | None = None,
        queue_size: int = 256,
    ) -> None:
        self._account = account
        self._transport = transport
        self._pipeline = pipeline
        self._policy_for = policy_for
        self._account_loader = account_loader
        self._telemetry = telemetry
        self._on_fault = on_fault
        self._on_state = on_state
        self._queue: asyncio.Queue[InboundEvent] = asyncio.Queue(maxsize=max(1, queue_size))
        self._pump_task: asyncio.Task[None] | None = None
        self._state: AccountState = "stopped"
        self._fault: WorkerFault | None = None
        self._busy = False
        self._retired = False
        self._consume_task: asyncio.Task[None] | None = None
        self._state: AccountState = "stopped"
        self._fault: WorkerFault | None = None

    @property
    def account_id(self) -> str:
        return self._account.account_id

    @property
    def state(self) -> AccountState:
        return self._state

    @property
    def fault(self) -> WorkerFault | None:
        return self._fault

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _set_state(self, state: AccountState) -> None:
        if state == self._state:
            return
        logger.info("worker_state account={} from={} to={}", self.account_id, self._state, state)
        self._state = state
        if self._on_state is not None:
            self._on_state(self.account_id, state)

    async def start(self) -> None:
        if self._state in ("starting", "running"):
            return
        self._fault = None
        self._retired = False
        self._set_state("starting")
        try:
            await self._transport.start()
        except Exception as e:
            await self._enter_fault(e)
            return
        self._consume_task = asyncio.create_task(self._consume())
        self._pump_task = asyncio.create_task(self._pump())
        self._set_state("running")

    async def stop(self) -> None:
        """Cancel the in-flight turn and close the session.

        Delivery timers are cancelled with the consumer task, so nothing else
        is sent. An LLM call already in flight is abandoned, not awaited.
        """
        await self._cancel_tasks()
        with contextlib.suppress(Exception):
            await self._transport.stop()
        self._drain_queue()
        self._set_state("stopped")

    async def join(self) -> None:
        """Wait until the worker is idle.

        Idle means the pump has moved every event the transport already had
        into the queue and the consumer has finished all of them. Returns at
        once when the worker is stopped or faulted.
        """
        while True:
            # Let the pump move events the transport has ready.
            await asyncio.sleep(0)
            if self._queue.empty() and not self._busy:
                return
            await self._queue.join()

    async def _pump(self) -> None:
        try:
            async for event in self._transport.events():
                await self._queue.put(event)
            raise TransportClosed("event stream ended")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._enter_fault(e)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            self._busy = True
            try:
                await self.process(event)
                if self._retired:
                    await self._retire()
                    return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await self._enter_fault(e)
                return
            finally:
                self._busy = False
                self._queue.task_done()

    async def process(self, event: InboundEvent) -> PipelineContext | None:
        """Run one turn. Exceptions escaping here fault the worker.

        When the account was deleted or deactivated since the worker started
        (possibly by another process), the event is discarded and the worker
        retires instead of speaking for it.
        """
        account = self._account
        if self._account_loader is not None:
            current = self._account_loader(self.account_id)
            if current is None or not current.active:
                logger.warning(
                    "worker_account_gone account={} reason={}",
                    self.account_id,
                    "deleted" if current is None else "inactive",
                )
                self._retired = True
                return None
            account = current
            self._account = account
        policy = self._policy_for(account.account_id, event.chat_id)
        ctx = await self._pipeline.run(event, account=account, policy=policy)
        if self._telemetry is not None:
            for sample in ctx.metrics:
                self._telemetry.incr(sample.name, sample.value, sample.labels)
        return ctx

    async def _retire(self) -> None:
        await self._cancel_tasks(keep=asyncio.current_task())
        with contextlib.suppress(Exception):
            await self._transport.stop()
        self._drain_queue()
        self._set_state("stopped")

    async def _enter_fault(self, cause: BaseException) -> None:
        if self._state in ("faulted", "stopped") and self._fault is not None:
            return
        fault = WorkerFault(self.account_id, cause)
        self._fault = fault
        logger.error("worker_faulted account={} error={}", self.account_id, fault)
        self._set_state("faulted")
        await self._cancel_tasks(keep=asyncio.current_task())
        with contextlib.suppress(Exception):
            await self._transport.stop()
        self._drain_queue()
        if self._on_fault is not None:
            try:
                await self._on_fault(fault)
            except Exception as e:
                logger.warning("worker_fault_report_failed account={} error={}", self.account_id, e)

    async def _cancel_tasks(self, keep: asyncio.Task | None = None) -> None:
        tasks = [t for t in (self._pump_task, self._consume_task) if t is not None and t is not keep]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._pump_task is not keep:
            self._pump_task = None
        if self._consume_task is not keep:
            self._consume_task = None

    def _drain_queue(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
