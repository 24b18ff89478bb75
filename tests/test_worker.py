import asyncio
from dataclasses import replace
from pathlib import Path

import pytest

from personaforge.config.schema import EscalationConfig, MemoryConfig
from personaforge.core.errors import TransportClosed, WorkerFault
from personaforge.core.pipeline import NextFn, Pipeline, PipelineContext
from personaforge.memory.service import MemoryService
from personaforge.memory.store import MemoryStore
from personaforge.security.escalation import EscalationPolicy
from personaforge.security.store import SecurityStore
from personaforge.storage.registry import AccountRegistry
from personaforge.worker.account import AccountWorker
from personaforge.worker.supervisor import WorkerSupervisor

from tests.fakes import FakeEmbedder, FakeLLM, FakeTransport, VirtualClock, build_harness, make_account, make_event, make_policy


class Recorder:
    def __init__(self) -> None:
        self.log: list[tuple[str, str]] = []

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        self.log.append(("start", ctx.event.text))
        await asyncio.sleep(0.01)
        self.log.append(("end", ctx.event.text))
        await next(ctx)


class Exploding:
    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        raise RuntimeError("pipeline bug")


class FailingStartTransport(FakeTransport):
    async def start(self) -> None:
        raise TransportClosed("bridge unreachable")


async def _until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")


def _worker(transport: FakeTransport, pipeline: Pipeline, **kwargs) -> AccountWorker:
    return AccountWorker(
        account=make_account(),
        transport=transport,
        pipeline=pipeline,
        policy_for=lambda account_id, chat_id: make_policy(chat_id=chat_id),
        **kwargs,
    )


async def test_events_are_processed_one_at_a_time_in_order() -> None:
    recorder = Recorder()
    transport = FakeTransport()
    worker = _worker(transport, Pipeline([recorder]))
    await worker.start()

    for text in ("one", "two", "three"):
        transport.push(make_event(text=text))
    await worker.join()
    await worker.stop()

    assert recorder.log == [
        ("start", "one"),
        ("end", "one"),
        ("start", "two"),
        ("end", "two"),
        ("start", "three"),
        ("end", "three"),
    ]


async def test_join_waits_for_events_already_at_the_transport() -> None:
    recorder = Recorder()
    transport = FakeTransport()
    for text in ("a", "b"):
        transport.push(make_event(text=text))
    worker = _worker(transport, Pipeline([recorder]))

    await worker.start()
    await worker.join()

    assert [entry for entry in recorder.log if entry[0] == "end"] == [("end", "a"), ("end", "b")]
    await worker.stop()


@pytest.mark.parametrize("change", ["deleted", "deactivated"])
async def test_worker_retires_when_account_changes_elsewhere(change: str) -> None:
    accounts = {"acc": make_account()}
    recorder = Recorder()
    transport = FakeTransport()
    states: list[str] = []
    worker = _worker(
        transport,
        Pipeline([recorder]),
        account_loader=accounts.get,
        on_state=lambda _account_id, state: states.append(state),
    )
    await worker.start()
    transport.push(make_event(text="one"))
    await worker.join()

    if change == "deleted":
        del accounts["acc"]
    else:
        accounts["acc"] = replace(accounts["acc"], active=False)
    transport.push(make_event(text="two"))
    transport.push(make_event(text="three"))
    await _until(lambda: worker.state == "stopped")

    assert recorder.log == [("start", "one"), ("end", "one")]
    assert states == ["starting", "running", "stopped"]
    assert worker.fault is None
    assert worker.pending == 0
    assert transport.stopped


async def test_closed_transport_faults_and_reports() -> None:
    transport = FakeTransport()
    faults: list[WorkerFault] = []
    states: list[str] = []

    async def on_fault(fault: WorkerFault) -> None:
        faults.append(fault)

    worker = _worker(
        transport,
        Pipeline([Recorder()]),
        on_fault=on_fault,
        on_state=lambda _account_id, state: states.append(state),
    )
    await worker.start()
    transport.close()
    await _until(lambda: bool(faults))

    assert worker.state == "faulted"
    assert isinstance(worker.fault.cause, TransportClosed)
    assert faults[0].account_id == "acc"
    assert states == ["starting", "running", "faulted"]
    assert transport.stopped


async def test_pipeline_exception_faults_without_restart() -> None:
    transport = FakeTransport()
    worker = _worker(transport, Pipeline([Exploding()]))
    await worker.start()
    transport.push(make_event(text="boom"))
    transport.push(make_event(text="never processed"))
    await _until(lambda: worker.state == "faulted")

    assert isinstance(worker.fault.cause, RuntimeError)
    assert worker.pending == 0
    await asyncio.sleep(0.02)
    assert worker.state == "faulted"


async def test_failed_start_faults() -> None:
    worker = _worker(FailingStartTransport(), Pipeline([]))
    await worker.start()
    assert worker.state == "faulted"
    assert isinstance(worker.fault.cause, TransportClosed)


async def test_end_to_end_turn_through_worker(tmp_path: Path, clock: VirtualClock) -> None:
    transport = FakeTransport()
    harness = build_harness(tmp_path, clock, transport, FakeLLM("hey bob||what's new"))
    worker = _worker(transport, harness.pipeline, telemetry=harness.telemetry)
    await worker.start()

    transport.push(make_event(text="hi alex, how was your day?"))
    await worker.join()
    await worker.stop()

    assert [text for _, text, _ in transport.sent] == ["hey bob", "what's new"]
    assert harness.telemetry.get_counter("chunks_sent") == 2
    assert harness.telemetry.total("turn_admitted") == 1
    harness.close()


async def test_stop_mid_generation_sends_nothing_and_frees_slot(tmp_path: Path, clock: VirtualClock) -> None:
    transport = FakeTransport()
    llm = FakeLLM("too late", delay=0.05)
    harness = build_harness(tmp_path, clock, transport, llm)
    worker = _worker(transport, harness.pipeline)
    await worker.start()

    transport.push(make_event(text="tell me something nice"))
    await _until(lambda: llm.in_flight == 1)
    await worker.stop()

    assert worker.state == "stopped"
    assert harness.limiter.in_flight == 1
    await _until(lambda: harness.limiter.in_flight == 0)
    assert transport.sent == []
    harness.close()


def _supervisor(tmp_path: Path, transports: list[FakeTransport]) -> tuple[WorkerSupervisor, AccountRegistry]:
    registry = AccountRegistry(tmp_path / "registry.db")

    def factory(account, supervisor):
        transport = FakeTransport()
        transports.append(transport)
        return AccountWorker(
            account=account,
            transport=transport,
            pipeline=Pipeline([Recorder()]),
            policy_for=lambda account_id, chat_id: make_policy(account_id=account_id, chat_id=chat_id),
            on_fault=supervisor.report_fault,
            on_state=supervisor.record_state,
        )

    return WorkerSupervisor(registry=registry, factory=factory), registry


async def test_supervisor_starts_active_accounts_and_persists_state(tmp_path: Path) -> None:
    transports: list[FakeTransport] = []
    supervisor, registry = _supervisor(tmp_path, transports)
    registry.upsert_account(make_account(account_id="a1"))
    registry.upsert_account(make_account(account_id="a2", active=False))

    started = await supervisor.start_all()

    assert [w.account_id for w in started] == ["a1"]
    assert registry.get_account("a1").state == "running"
    assert registry.get_account("a2").state == "stopped"
    with pytest.raises(KeyError):
        await supervisor.start("ghost")

    await supervisor.stop_all()
    assert registry.get_account("a1").state == "stopped"
    assert supervisor.workers == {}
    registry.close()


async def test_supervisor_replaces_faulted_worker_only_on_explicit_start(tmp_path: Path) -> None:
    transports: list[FakeTransport] = []
    supervisor, registry = _supervisor(tmp_path, transports)
    registry.upsert_account(make_account(account_id="a1"))

    first = await supervisor.start("a1")
    transports[0].close()
    await _until(lambda: first.state == "faulted")
    assert registry.get_account("a1").state == "faulted"
    assert len(transports) == 1

    second = await supervisor.start("a1")
    assert second is not first
    assert second.state == "running"
    await supervisor.stop_all()
    registry.close()


async def test_delete_account_purges_every_store(tmp_path: Path) -> None:
    registry = AccountRegistry(tmp_path / "registry.db")
    memory_store = MemoryStore(tmp_path / "memory.db")
    security_store = SecurityStore(tmp_path / "security.db")

    memory = MemoryService(config=MemoryConfig(), store=memory_store, embedder=FakeEmbedder(), clock=VirtualClock())
    supervisor = WorkerSupervisor(
        registry=registry,
        factory=lambda account, sup: _worker(FakeTransport(), Pipeline([])),
        memory=memory,
        security_store=security_store,
    )
    registry.upsert_account(make_account(account_id="acc"))
    registry.append_history("acc", "chat-1", role="user", text="hi")
    memory_store.add(account_id="acc", chat_id="chat-1", text="kept fact", embedding=[1.0], created_at=0.0)
    security_store.record_violation("acc", "u1", now=0.0, policy=EscalationPolicy.from_config(EscalationConfig()))
    await supervisor.start("acc")

    assert await supervisor.delete_account("acc")

    assert supervisor.get("acc") is None
    assert registry.get_account("acc") is None
    assert registry.recent_history("acc", "chat-1", 10) == []
    assert memory_store.count("acc", "chat-1") == 0
    assert security_store.get("acc", "u1") is None
    registry.close()
    memory_store.close()
    security_store.close()
