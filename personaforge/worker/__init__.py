"""Account workers and their supervisor."""

from personaforge.worker.account import AccountWorker
from personaforge.worker.supervisor import WorkerSupervisor

__all__ = ["AccountWorker", "WorkerSupervisor"]
