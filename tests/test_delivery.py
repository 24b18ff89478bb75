import asyncio
import random

import pytest

from personaforge.config.schema import DeliveryConfig
from personaforge.core.models import ChunkPlan, Chunks, DeliveryPlan, Distraction, HumanizationSettings
from personaforge.delivery.engine import DeliveryEngine
from personaforge.delivery.timing import DeliveryPlanner
from personaforge.telemetry.inmemory import InMemoryTelemetry

from tests.fakes import FakeTransport, GatedClock, VirtualClock, make_event

SETTINGS = HumanizationSettings(min_read_delay_seconds=5.0, max_read_delay_seconds=60.0, typing_speed_cpm=200)


def _plan(*chunks: ChunkPlan, send_mode: str = "standalone", reply_to: str | None = None) -> DeliveryPlan:
    return DeliveryPlan(chunks=tuple(chunks), send_mode=send_mode, reply_to_message_id=reply_to)


async def test_single_chunk_elapsed_time_stays_within_bounds() -> None:
    text = "x" * 50  # 15s at 200 cpm
    config = DeliveryConfig(distraction_probability=0.0)
    for seed in range(40):
        clock = VirtualClock()
        planner = DeliveryPlanner(config, random.Random(seed))
        plan = planner.plan(Chunks((text,)), event=make_event(), settings=SETTINGS)
        engine = DeliveryEngine(FakeTransport(), clock)

        await engine.deliver(plan, chat_id="chat-1")

        elapsed = clock.now() - 1_760_000_000.0
        assert 5.0 + 15.0 * 0.8 - 1e-9 <= elapsed <= 60.0 + 15.0 * 1.2 + 1e-9


def test_typing_duration_is_clamped() -> None:
    planner = DeliveryPlanner(DeliveryConfig(), random.Random(3))
    assert planner.typing_seconds("", 200) == 1.0
    assert planner.typing_seconds("k", 200) == 1.0
    assert planner.typing_seconds("x" * 5000, 200) == 30.0


def test_distraction_needs_enough_typing_time() -> None:
    planner = DeliveryPlanner(DeliveryConfig(distraction_probability=1.0), random.Random(5))
    assert planner.distraction(1.5) is None
    distraction = planner.distraction(20.0)
    assert distraction is not None
    assert 2.0 <= distraction.after_seconds <= 4.0
    assert 3.0 <= distraction.pause_seconds <= 10.0
    assert DeliveryPlanner(DeliveryConfig(distraction_probability=0.0)).distraction(20.0) is None


def test_send_mode_rules() -> None:
    planner = DeliveryPlanner(DeliveryConfig(), random.Random(1))
    always = HumanizationSettings(reply_probability=1.0)
    never = HumanizationSettings(reply_probability=0.0)

    assert planner.choose_send_mode(make_event(message_id=None, is_private=False), always) == "standalone"
    assert planner.choose_send_mode(make_event(reply_to_self=True, is_private=False), never) == "as_reply"
    assert planner.choose_send_mode(make_event(reply_to_self=True, is_private=True), always) == "standalone"
    assert planner.choose_send_mode(make_event(is_private=True), always) == "standalone"
    assert planner.choose_send_mode(make_event(is_private=False), always) == "as_reply"
    assert planner.choose_send_mode(make_event(is_private=False), never) == "standalone"


def test_plan_reads_once_and_pauses_between_chunks() -> None:
    planner = DeliveryPlanner(DeliveryConfig(), random.Random(11))
    plan = planner.plan(
        Chunks(("one", "two", "three")),
        event=make_event(is_private=False),
        settings=HumanizationSettings(reply_probability=1.0),
    )
    first, *rest = plan.chunks
    assert 5.0 <= first.read_delay_seconds <= 60.0
    assert first.pause_before_seconds == 0.0
    assert all(c.read_delay_seconds == 0.0 for c in rest)
    assert all(0.5 <= c.pause_before_seconds <= 1.5 for c in rest)
    assert plan.send_mode == "as_reply"
    assert plan.reply_to_message_id == "m-1"


async def test_only_first_chunk_is_sent_as_reply(clock: VirtualClock) -> None:
    transport = FakeTransport()
    plan = _plan(
        ChunkPlan(text="ok", read_delay_seconds=2.0, typing_seconds=1.0),
        ChunkPlan(text="sure", read_delay_seconds=0.0, typing_seconds=1.0, pause_before_seconds=1.0),
        send_mode="as_reply",
        reply_to="m-9",
    )
    sent = await DeliveryEngine(transport, clock).deliver(plan, chat_id="chat-1")
    assert sent == ["ok", "sure"]
    assert transport.sent == [("chat-1", "ok", "m-9"), ("chat-1", "sure", None)]


async def test_distracted_chunk_walks_expected_states(clock: VirtualClock) -> None:
    transport = FakeTransport()
    states: list[tuple[int, str]] = []
    engine = DeliveryEngine(transport, clock, on_transition=lambda i, s: states.append((i, s)))
    plan = _plan(
        ChunkPlan(
            text="let me think about it",
            read_delay_seconds=3.0,
            typing_seconds=10.0,
            distraction=Distraction(after_seconds=3.0, pause_seconds=5.0),
        ),
        ChunkPlan(text="yes", read_delay_seconds=0.0, typing_seconds=1.0, pause_before_seconds=1.0),
    )
    start = clock.now()

    await engine.deliver(plan, chat_id="chat-1", read_message_id="m-1")

    assert states == [
        (0, "pending_read"),
        (0, "reading"),
        (0, "typing_start"),
        (0, "distracted"),
        (0, "typing_done"),
        (0, "sent"),
        (1, "pending_read"),
        (1, "typing_start"),
        (1, "typing_steady"),
        (1, "typing_done"),
        (1, "sent"),
    ]
    assert clock.now() - start == pytest.approx(3.0 + 10.0 + 5.0 + 1.0 + 1.0)
    assert transport.calls[0] == ("read", "chat-1", "m-1")
    paused_at = transport.calls.index(("typing", "chat-1", False))
    assert transport.calls[paused_at - 1] == ("typing", "chat-1", True)


async def test_typing_indicator_is_refreshed(clock: VirtualClock) -> None:
    transport = FakeTransport()
    plan = _plan(ChunkPlan(text="long answer", read_delay_seconds=0.0, typing_seconds=10.0))
    await DeliveryEngine(transport, clock, typing_refresh_seconds=4.0).deliver(plan, chat_id="chat-1")
    typing_on = [c for c in transport.calls if c == ("typing", "chat-1", True)]
    assert len(typing_on) == 3
    assert clock.sleeps == [4.0, 4.0, 2.0]


async def test_read_receipt_skipped_when_unsupported(clock: VirtualClock) -> None:
    transport = FakeTransport(read_receipts=False)
    plan = _plan(ChunkPlan(text="hey", read_delay_seconds=2.0, typing_seconds=1.0))
    await DeliveryEngine(transport, clock).deliver(plan, chat_id="chat-1", read_message_id="m-1")
    assert not [c for c in transport.calls if c[0] == "read"]
    assert transport.sent == [("chat-1", "hey", None)]


async def test_failed_send_does_not_stop_later_chunks(clock: VirtualClock) -> None:
    transport = FakeTransport(fail_sends={1})
    telemetry = InMemoryTelemetry()
    plan = _plan(
        *(ChunkPlan(text=t, read_delay_seconds=0.0, typing_seconds=1.0) for t in ("a", "b", "c")),
    )
    sent = await DeliveryEngine(transport, clock, telemetry=telemetry).deliver(plan, chat_id="chat-1")
    assert sent == ["a", "c"]
    assert [s[1] for s in transport.sent] == ["a", "c"]
    assert telemetry.total("delivery_failed") == 1


async def test_cancellation_mid_typing_sends_nothing() -> None:
    clock = GatedClock(gate_after=1)
    transport = FakeTransport()
    plan = _plan(
        ChunkPlan(text="first", read_delay_seconds=2.0, typing_seconds=5.0),
        ChunkPlan(text="second", read_delay_seconds=0.0, typing_seconds=1.0, pause_before_seconds=1.0),
    )
    task = asyncio.create_task(DeliveryEngine(transport, clock).deliver(plan, chat_id="chat-1"))
    await clock.blocked.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    clock.release()
    await asyncio.sleep(0)

    assert transport.sent == []
    assert clock.sleeps == [2.0]
