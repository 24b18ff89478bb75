"""In-memory counter sink used by workers and the status command."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field

from loguru import logger

from personaforge.core.ports import TelemetryPort


@dataclass
class InMemoryTelemetry:
    """Labelled counters with structured debug logging.

    Counter keys look like ``name{k=v,...}``; ``total()`` sums across labels.
    Every increment is also forwarded to ``mirror`` when one is set.
    """

    counters: Counter[str] = field(default_factory=Counter)
    mirror: TelemetryPort | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def incr(self, name: str, value: int = 1, labels: tuple[tuple[str, str], ...] = ()) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self.counters[key] += int(value)
        if self.mirror is not None:
            self.mirror.incr(name, value, labels)
        logger.debug("telemetry {} += {}", key, value)

    @staticmethod
    def _make_key(name: str, labels: tuple[tuple[str, str], ...]) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in labels)
        return f"{name}{{{label_str}}}"

    def get_counter(self, name: str, labels: tuple[tuple[str, str], ...] = ()) -> int:
        with self._lock:
            return int(self.counters[self._make_key(name, labels)])

    def total(self, name: str) -> int:
        """Sum of ``name`` across every label combination."""
        prefix = f"{name}{{"
        with self._lock:
            return sum(v for k, v in self.counters.items() if k == name or k.startswith(prefix))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(sorted(self.counters.items()))

    def reset(self) -> None:
        with self._lock:
            self.counters.clear()
