"""Prometheus counters for personaforge.

Usage:
    telemetry = PrometheusTelemetry(TelemetryConfig(prometheus_enabled=True))
    telemetry.start()
    telemetry.incr("turn_dropped", labels=(("reason", "stale"),))

    # Scrape http://127.0.0.1:9464/metrics
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger
from prometheus_client import CollectorRegistry, Counter, start_http_server

if TYPE_CHECKING:
    from personaforge.config.schema import TelemetryConfig

_PREFIX = "personaforge_"


class PrometheusTelemetry:
    """Counter sink backed by its own ``CollectorRegistry``.

    Counters are created on first use with the label names of that call.
    The HTTP endpoint binds to localhost unless configured otherwise.
    """

    def __init__(self, config: "TelemetryConfig", *, registry: CollectorRegistry | None = None) -> None:
        self._config = config
        self.registry = registry or CollectorRegistry()
        self._counters: dict[str, Counter] = {}
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        try:
            start_http_server(self._config.prometheus_port, addr=self._config.prometheus_host, registry=self.registry)
        except OSError as e:
            logger.error(
                "prometheus_start_failed host={} port={} error={}",
                self._config.prometheus_host,
                self._config.prometheus_port,
                e,
            )
            return
        self._started = True
        logger.info(
            "prometheus_started url=http://{}:{}/metrics",
            self._config.prometheus_host,
            self._config.prometheus_port,
        )

    def incr(self, name: str, value: int = 1, labels: tuple[tuple[str, str], ...] = ()) -> None:
        metric = self._counters.get(name)
        if metric is None:
            metric = Counter(
                f"{_PREFIX}{name}",
                f"Counter: {name}",
                labelnames=[k for k, _ in labels],
                registry=self.registry,
            )
            self._counters[name] = metric
        try:
            if labels:
                metric.labels(**dict(labels)).inc(value)
            else:
                metric.inc(value)
        except ValueError as e:
            # Label set differs from the one the counter was created with.
            logger.warning("prometheus_label_mismatch metric={} error={}", name, e)
