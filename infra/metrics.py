"""Prometheus-backed metrics hooks for the trading cycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)


@dataclass
class CycleStats:
    status: str
    strategy: Optional[str]
    approved: bool
    executed: bool
    duration_seconds: float


class MetricsRecorder:
    """
    Expose trading cycle stats via Prometheus.

    Each recorder owns its CollectorRegistry, so several recorders (tests,
    embedded loops) never collide on metric names. When disabled every
    record_* call is a no-op apart from remembering the last cycle.
    """

    def __init__(self, enabled: bool = False, port: int = 9100) -> None:
        self._enabled = bool(enabled)
        self._port = int(port)
        self._started = False
        self._last_cycle_stats: Optional[CycleStats] = None
        self.registry = CollectorRegistry()

        if not self._enabled:
            self._cycle_summary = None
            self._cycle_counter = None
            self._decision_counter = None
            self._rejection_counter = None
            self._execution_counter = None
            self._portfolio_gauge = None
            return

        self._cycle_summary = Summary(
            "trader_cycle_duration_seconds",
            "Duration of a full trading cycle",
            registry=self.registry,
        )
        self._cycle_counter = Counter(
            "trader_cycle_total",
            "Total trading cycles by status",
            labelnames=("status",),
            registry=self.registry,
        )
        self._decision_counter = Counter(
            "trader_decisions_total",
            "Candidate instructions produced, by strategy",
            labelnames=("strategy",),
            registry=self.registry,
        )
        self._rejection_counter = Counter(
            "trader_risk_rejections_total",
            "Instructions rejected by the risk gate, by reason",
            labelnames=("reason",),
            registry=self.registry,
        )
        self._execution_counter = Counter(
            "trader_executions_total",
            "Execution attempts by outcome",
            labelnames=("outcome",),
            registry=self.registry,
        )
        self._portfolio_gauge = Gauge(
            "trader_portfolio_value_usd",
            "Portfolio value observed at cycle start",
            registry=self.registry,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def last_cycle(self) -> Optional[CycleStats]:
        return self._last_cycle_stats

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        start_http_server(self._port, registry=self.registry)
        self._started = True
        logger.info("Prometheus metrics exporter listening on port %s", self._port)

    def record_cycle(self, stats: CycleStats) -> None:
        self._last_cycle_stats = stats
        if not self._enabled:
            return
        self._cycle_summary.observe(max(stats.duration_seconds, 0.0))
        self._cycle_counter.labels(status=stats.status).inc()

    def record_decision(self, strategy: str) -> None:
        if self._enabled:
            self._decision_counter.labels(strategy=strategy or "unknown").inc()

    def record_rejection(self, reason: str) -> None:
        if self._enabled:
            self._rejection_counter.labels(reason=_reason_label(reason)).inc()

    def record_execution(self, success: bool) -> None:
        if self._enabled:
            self._execution_counter.labels(outcome="success" if success else "failure").inc()

    def set_portfolio_value(self, value: float) -> None:
        if self._enabled:
            self._portfolio_gauge.set(float(value))

    def sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Current value of one sample in this recorder's registry."""
        return self.registry.get_sample_value(name, labels or {})


def _reason_label(reason: str) -> str:
    # Keep label cardinality bounded: "risk check error: <detail>" collapses
    head = (reason or "unknown").split(":", 1)[0]
    return head.strip()[:64] or "unknown"


__all__ = ["CycleStats", "MetricsRecorder"]
