"""Worker supervisor and account administration."""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from personaforge.core.errors import WorkerFault
from personaforge.core.models import Account, AccountState
from personaforge.core.ports import OwnerNotifierPort
from personaforge.memory.service import MemoryService
from personaforge.security.store import SecurityStore
from personaforge.storage.registry import AccountRegistry
from personaforge.worker.account import AccountWorker

WorkerFactory = Callable[[Account, "WorkerSupervisor"], AccountWorker]


class WorkerSupervisor:
    """Start, stop and delete account workers; record their state.

    Faults are persisted and reported to the owner. Restarting a faulted
    worker is an explicit ``start`` call.
    """

    def __init__(
        self,
        *,
        registry: AccountRegistry,
        factory: WorkerFactory,
        memory: MemoryService | None = None,
        security_store: SecurityStore | None = None,
        notifier: OwnerNotifierPort | None = None,
    ) -> None:
        self._registry = registry
        self._factory = factory
        self._memory = memory
        self._security_store = security_store
        self._notifier = notifier
        self._workers: dict[str, AccountWorker] = {}

    @property
    def workers(self) -> dict[str, AccountWorker]:
        return dict(self._workers)

    def get(self, account_id: str) -> AccountWorker | None:
        return self._workers.get(account_id)

    async def start(self, account_id: str) -> AccountWorker:
        account = self._registry.get_account(account_id)
        if account is None:
            raise KeyError(f"unknown account: {account_id}")
        worker = self._workers.get(account_id)
        if worker is not None and worker.state in ("starting", "running"):
            return worker
        if worker is None or worker.state == "faulted":
            worker = self._factory(account, self)
            self._workers[account_id] = worker
        await worker.start()
        return worker

    async def start_all(self) -> list[AccountWorker]:
        started: list[AccountWorker] = []
        for account in self._registry.list_accounts():
            if not account.active:
                continue
            started.append(await self.start(account.account_id))
        return started

    async def stop(self, account_id: str) -> bool:
        worker = self._workers.pop(account_id, None)
        if worker is None:
            return False
        await worker.stop()
        return True

    async def stop_all(self) -> None:
        for account_id in list(self._workers):
            await self.stop(account_id)

    async def delete_account(self, account_id: str) -> bool:
        """Stop the worker, then purge memory, strikes and the account itself."""
        await self.stop(account_id)
        if self._memory is not None:
            self._memory.purge_account(account_id)
        if self._security_store is not None:
            self._security_store.purge_account(account_id)
        deleted = self._registry.delete_account(account_id)
        logger.info("account_deleted account={} existed={}", account_id, deleted)
        return deleted

    def status(self) -> list[tuple[Account, AccountState]]:
        rows: list[tuple[Account, AccountState]] = []
        for account in self._registry.list_accounts():
            worker = self._workers.get(account.account_id)
            rows.append((account, worker.state if worker is not None else account.state))
        return rows

    def record_state(self, account_id: str, state: AccountState) -> None:
        try:
            self._registry.set_state(account_id, state)
        except Exception as e:
            logger.warning("account_state_persist_failed account={} state={} error={}", account_id, state, e)

    async def report_fault(self, fault: WorkerFault) -> None:
        if self._notifier is None:
            return
        await self._notifier.notify(f"⚠️ {fault}", key=f"worker_fault:{fault.account_id}")
