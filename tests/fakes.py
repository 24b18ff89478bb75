"""Fakes, builders and a full-pipeline harness shared by the test modules."""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

from personaforge.config.schema import (
    DeliveryConfig,
    GateConfig,
    LLMConfig,
    MemoryConfig,
    PersonaConfig,
    SecurityConfig,
)
from personaforge.core.errors import TransportClosed
from personaforge.core.models import Account, ChatPolicy, HumanizationSettings, InboundEvent
from personaforge.core.pipeline import Pipeline
from personaforge.delivery.engine import DeliveryEngine
from personaforge.delivery.timing import DeliveryPlanner
from personaforge.gate.admission import AdmissionGate
from personaforge.memory.service import MemoryService
from personaforge.memory.store import MemoryStore
from personaforge.pipeline import (
    AdmissionMiddleware,
    ContextMiddleware,
    DeliveryMiddleware,
    MediaMiddleware,
    MemoryMiddleware,
    ResponderMiddleware,
    SecurityMiddleware,
)
from personaforge.responder.limiter import FairLimiter, LimitedCompletion
from personaforge.responder.orchestrator import ResponseOrchestrator
from personaforge.security.screen import SecurityScreen
from personaforge.security.store import SecurityStore
from personaforge.storage.registry import AccountRegistry
from personaforge.telemetry.inmemory import InMemoryTelemetry

NOW = 1_760_000_000.0
PERSONA = PersonaConfig(name="default", display_name="Alex", system="You are Alex.")


class VirtualClock:
    """Time only moves when the code under test sleeps."""

    def __init__(self, start: float = NOW) -> None:
        self.t = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += max(0.0, seconds)
        await asyncio.sleep(0)


class GatedClock(VirtualClock):
    """Virtual clock whose sleeps block once ``gate_after`` sleeps have passed."""

    def __init__(self, start: float = NOW, *, gate_after: int = 0) -> None:
        super().__init__(start)
        self.gate_after = gate_after
        self.blocked = asyncio.Event()
        self._release = asyncio.Event()

    async def sleep(self, seconds: float) -> None:
        if len(self.sleeps) >= self.gate_after:
            self.blocked.set()
            await self._release.wait()
        await super().sleep(seconds)

    def release(self) -> None:
        self._release.set()


class FakeTransport:
    def __init__(self, *, fail_sends: set[int] | None = None, read_receipts: bool = True) -> None:
        self.sent: list[tuple[str, str, str | None]] = []
        self.calls: list[tuple] = []
        self.started = False
        self.stopped = False
        self.fail_sends = fail_sends or set()
        self._read_receipts = read_receipts
        self._inbound: asyncio.Queue[InboundEvent | None] = asyncio.Queue()
        self._send_attempts = 0

    @property
    def supports_read_receipts(self) -> bool:
        return self._read_receipts

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    def push(self, event: InboundEvent) -> None:
        self._inbound.put_nowait(event)

    def close(self) -> None:
        self._inbound.put_nowait(None)

    async def events(self) -> AsyncIterator[InboundEvent]:
        while True:
            event = await self._inbound.get()
            if event is None:
                raise TransportClosed("session ended")
            yield event

    async def send_text(self, chat_id: str, text: str, *, reply_to_message_id: str | None = None) -> None:
        index = self._send_attempts
        self._send_attempts += 1
        self.calls.append(("send", chat_id, text))
        if index in self.fail_sends:
            raise RuntimeError("network down")
        self.sent.append((chat_id, text, reply_to_message_id))

    async def set_typing(self, chat_id: str, enabled: bool) -> None:
        self.calls.append(("typing", chat_id, enabled))

    async def mark_read(self, chat_id: str, message_id: str) -> None:
        self.calls.append(("read", chat_id, message_id))


class FakeLLM:
    """Completion and embedding fake with a scripted reply."""

    def __init__(self, reply: str = "ok", *, delay: float = 0.0) -> None:
        self.reply = reply
        self.delay = delay
        self.prompts: list[str] = []
        self.in_flight = 0
        self.peak = 0

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self.reply
        finally:
            self.in_flight -= 1


class FakeEmbedder:
    """Deterministic bag-of-letters embedding."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding backend down")
        vector = [0.0] * 26
        for ch in text.lower():
            if "a" <= ch <= "z":
                vector[ord(ch) - 97] += 1.0
        vector.append(1.0)
        return vector


def make_event(**overrides) -> InboundEvent:
    payload = {
        "account_id": "acc",
        "chat_id": "chat-1",
        "sender_id": "user-1",
        "message_id": "m-1",
        "timestamp": NOW,
        "text": "hello there",
        "is_private": True,
        "sender_name": "Bob",
    }
    payload.update(overrides)
    return InboundEvent(**payload)


def make_account(**overrides) -> Account:
    humanization = overrides.pop("humanization", None) or HumanizationSettings(
        min_read_delay_seconds=5.0,
        max_read_delay_seconds=60.0,
    )
    payload = {"account_id": "acc", "username": "alex_bot", "humanization": humanization}
    payload.update(overrides)
    return Account(**payload)


def make_policy(**overrides) -> ChatPolicy:
    payload = {"account_id": "acc", "chat_id": "chat-1", "cooldown_seconds": 0.0}
    payload.update(overrides)
    return ChatPolicy(**payload)


@dataclass
class Harness:
    """Full turn pipeline over real stores with fake network edges."""

    pipeline: Pipeline
    registry: AccountRegistry
    memory_store: MemoryStore
    security_store: SecurityStore
    limiter: FairLimiter
    telemetry: InMemoryTelemetry

    def close(self) -> None:
        self.registry.close()
        self.memory_store.close()
        self.security_store.close()


def build_harness(
    tmp_path: Path,
    clock: VirtualClock,
    transport: FakeTransport,
    llm: FakeLLM,
    *,
    security: SecurityConfig | None = None,
    extractor=None,
) -> Harness:
    rng = random.Random(0)
    telemetry = InMemoryTelemetry()
    registry = AccountRegistry(tmp_path / "registry.db")
    security_store = SecurityStore(tmp_path / "security.db")
    security = security or SecurityConfig()
    screen = SecurityScreen(security, security_store, clock)
    memory_store = MemoryStore(tmp_path / "memory.db")
    memory = MemoryService(
        config=MemoryConfig(),
        store=memory_store,
        embedder=FakeEmbedder(),
        clock=clock,
        summarizer=llm,
        telemetry=telemetry,
    )
    limiter = FairLimiter(3, queue_timeout=5)
    orchestrator = ResponseOrchestrator(
        config=LLMConfig(),
        completion=LimitedCompletion(llm, limiter, timeout_seconds=5),
        personas=lambda _name: PERSONA,
        telemetry=telemetry,
    )
    pipeline = Pipeline(
        [
            AdmissionMiddleware(gate=AdmissionGate(config=GateConfig(), clock=clock, persona=PERSONA, rng=rng)),
            MediaMiddleware(extractor=extractor, screen=screen),
            SecurityMiddleware(screen=screen, config=security, rng=rng),
            ContextMiddleware(registry=registry),
            MemoryMiddleware(memory=memory),
            ResponderMiddleware(orchestrator=orchestrator),
            DeliveryMiddleware(
                planner=DeliveryPlanner(DeliveryConfig(distraction_probability=0.0), rng),
                engine=DeliveryEngine(transport, clock, telemetry=telemetry),
            ),
        ]
    )
    return Harness(
        pipeline=pipeline,
        registry=registry,
        memory_store=memory_store,
        security_store=security_store,
        limiter=limiter,
        telemetry=telemetry,
    )
