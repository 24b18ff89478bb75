"""Runtime wiring: build shared services once, one pipeline per account."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field

from loguru import logger

from personaforge.channels.bridge import BridgeTransport
from personaforge.config.schema import Config
from personaforge.core.clock import SystemClock
from personaforge.core.models import Account, ChatPolicy
from personaforge.core.pipeline import Pipeline
from personaforge.core.ports import ClockPort, TransportPort
from personaforge.delivery.engine import DeliveryEngine
from personaforge.delivery.timing import DeliveryPlanner
from personaforge.gate.admission import AdmissionGate
from personaforge.media.extractor import MediaExtractor
from personaforge.media.vision import VisionDescriber
from personaforge.memory.service import MemoryService
from personaforge.memory.store import MemoryStore
from personaforge.notify.owner import OwnerNotifier
from personaforge.pipeline import (
    AdmissionMiddleware,
    ContextMiddleware,
    DeliveryMiddleware,
    MediaMiddleware,
    MemoryMiddleware,
    ResponderMiddleware,
    SecurityMiddleware,
)
from personaforge.providers.llm import LiteLLMService
from personaforge.providers.search import TavilySearch
from personaforge.providers.transcription import WhisperTranscriptionProvider
from personaforge.responder.limiter import FairLimiter, LimitedCompletion
from personaforge.responder.orchestrator import ResponseOrchestrator
from personaforge.responder.search import SearchDecider
from personaforge.security.screen import SecurityScreen
from personaforge.security.store import SecurityStore
from personaforge.storage.registry import AccountRegistry
from personaforge.telemetry.inmemory import InMemoryTelemetry
from personaforge.telemetry.prometheus import PrometheusTelemetry
from personaforge.worker.account import AccountWorker
from personaforge.worker.supervisor import WorkerSupervisor


@dataclass
class Runtime:
    """Process-wide services. ``limiter`` is shared by every account."""

    config: Config
    clock: ClockPort
    telemetry: InMemoryTelemetry
    registry: AccountRegistry
    security_store: SecurityStore
    screen: SecurityScreen
    memory_store: MemoryStore
    memory: MemoryService
    limiter: FairLimiter
    orchestrator: ResponseOrchestrator
    planner: DeliveryPlanner
    notifier: OwnerNotifier
    media: MediaExtractor
    supervisor: WorkerSupervisor = field(init=False)
    rng: random.Random = field(default_factory=random.Random)

    def policy_for(self, account_id: str, chat_id: str) -> ChatPolicy:
        return self.registry.resolve_chat_policy(account_id, chat_id, self.config.chat_defaults)

    def make_transport(self, account: Account) -> TransportPort:
        return BridgeTransport(self.config.transport, account.account_id)

    def build_pipeline(self, account: Account, transport: TransportPort) -> Pipeline:
        persona = self.config.get_persona(account.persona)
        engine = DeliveryEngine(
            transport,
            self.clock,
            typing_refresh_seconds=self.config.delivery.typing_refresh_seconds,
            telemetry=self.telemetry,
        )
        return Pipeline(
            [
                AdmissionMiddleware(
                    gate=AdmissionGate(config=self.config.gate, clock=self.clock, persona=persona, rng=self.rng)
                ),
                MediaMiddleware(extractor=self.media, screen=self.screen),
                SecurityMiddleware(screen=self.screen, config=self.config.security, rng=self.rng),
                ContextMiddleware(registry=self.registry),
                MemoryMiddleware(memory=self.memory),
                ResponderMiddleware(orchestrator=self.orchestrator),
                DeliveryMiddleware(planner=self.planner, engine=engine),
            ]
        )

    def make_worker(self, account: Account, supervisor: WorkerSupervisor) -> AccountWorker:
        transport = self.make_transport(account)
        return AccountWorker(
            account=account,
            transport=transport,
            pipeline=self.build_pipeline(account, transport),
            policy_for=self.policy_for,
            account_loader=self.registry.get_account,
            telemetry=self.telemetry,
            on_fault=supervisor.report_fault,
            on_state=supervisor.record_state,
        )

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Start every active account and serve until ``stop`` is set."""
        stop = stop or asyncio.Event()
        if isinstance(self.telemetry.mirror, PrometheusTelemetry):
            self.telemetry.mirror.start()
        started = await self.supervisor.start_all()
        logger.info("runtime_started accounts={}", len(started))
        try:
            await stop.wait()
        finally:
            await self.supervisor.stop_all()
            logger.info("runtime_stopped")

    def close(self) -> None:
        self.registry.close()
        self.security_store.close()
        self.memory_store.close()


def build_runtime(config: Config, *, clock: ClockPort | None = None) -> Runtime:
    clock = clock or SystemClock()
    telemetry = InMemoryTelemetry()
    if config.telemetry.prometheus_enabled:
        telemetry.mirror = PrometheusTelemetry(config.telemetry)
    notifier = OwnerNotifier(config.notify, clock=clock.now)

    registry = AccountRegistry(
        config.resolve_db_path(config.storage.registry_db),
        history_limit=config.storage.history_limit,
    )
    security_store = SecurityStore(config.resolve_db_path(config.security.db_path))
    screen = SecurityScreen(config.security, security_store, clock)

    llm = LiteLLMService(config.llm)
    limiter = FairLimiter(config.llm.max_concurrency, queue_timeout=config.llm.queue_timeout_seconds)
    completion = LimitedCompletion(llm, limiter, timeout_seconds=config.llm.timeout_seconds)

    memory_store = MemoryStore(
        config.resolve_db_path(config.memory.db_path),
        max_records=config.memory.max_records,
    )
    memory = MemoryService(
        config=config.memory,
        store=memory_store,
        embedder=llm,
        clock=clock,
        summarizer=completion,
        telemetry=telemetry,
    )

    search = TavilySearch(
        config.search.api_key,
        max_results=config.search.max_results,
        timeout_seconds=config.search.timeout_seconds,
    )
    decider = SearchDecider(config.search.mode, completion=completion)
    if decider.enabled and not search.configured:
        logger.warning("search_disabled reason=missing_api_key mode={}", config.search.mode)
    orchestrator = ResponseOrchestrator(
        config=config.llm,
        completion=completion,
        personas=config.get_persona,
        decider=decider if search.configured else None,
        search=search if search.configured else None,
        telemetry=telemetry,
        notifier=notifier,
        memory_max_chars=config.memory.max_prompt_chars,
    )

    media = MediaExtractor(
        config.media,
        transcriber=WhisperTranscriptionProvider(
            config.media.asr_api_key or None,
            api_base=config.media.asr_api_base,
            model=config.media.asr_model,
            timeout_seconds=config.media.timeout_seconds,
        ),
        describer=VisionDescriber(config.media.vision_model, timeout_seconds=config.media.timeout_seconds),
    )

    runtime = Runtime(
        config=config,
        clock=clock,
        telemetry=telemetry,
        registry=registry,
        security_store=security_store,
        screen=screen,
        memory_store=memory_store,
        memory=memory,
        limiter=limiter,
        orchestrator=orchestrator,
        planner=DeliveryPlanner(config.delivery),
        notifier=notifier,
        media=media,
    )
    runtime.supervisor = WorkerSupervisor(
        registry=registry,
        factory=runtime.make_worker,
        memory=memory,
        security_store=security_store,
        notifier=notifier,
    )
    return runtime
