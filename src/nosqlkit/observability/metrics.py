from __future__ import annotations

"""
nosqlkit.observability.metrics
==============================

Prometheus metrics for the driver.

Features:
- Helpers to create low-cardinality, label-validated metrics (SafeCounter/Histogram).
- `ClientMetrics`: the bundle one client records into.

Design notes:
- Each client gets its own `CollectorRegistry` unless one is passed in, so
  several clients (and tests) can coexist in one process without duplicate
  registration errors. Pass `prometheus_client.REGISTRY` to expose metrics
  through the default registry.
- Labels are operation kinds, error kinds and outcomes only; never table
  names or keys.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import prometheus_client as prom

__all__ = [
    "ClientMetrics",
    "SafeCounter",
    "SafeHistogram",
]


class _LabelChecker:
    """Validate label names against an allowlist to keep cardinality under control."""

    __slots__ = ("_allowed",)

    def __init__(self, allowed: Iterable[str] | None) -> None:
        self._allowed = frozenset(allowed or ())

    def validate(self, labels: Mapping[str, str]) -> None:
        if not self._allowed:
            return
        unknown = [k for k in labels if k not in self._allowed]
        if unknown:
            raise ValueError(f"Unknown label(s) for metric: {unknown}; allowed={sorted(self._allowed)}")


class SafeCounter:
    """
    Counter wrapper that validates label names against an allowlist.

    Example:
        cnt = SafeCounter("nosqlkit_operations_total", "Operations", label_names=["op", "outcome"])
        cnt.labels(op="get", outcome="ok").inc()
    """

    def __init__(
        self,
        name: str,
        documentation: str,
        *,
        label_names: Sequence[str] | None = None,
        registry: prom.CollectorRegistry | None = None,
    ) -> None:
        self._checker = _LabelChecker(label_names or [])
        self._metric = prom.Counter(
            name, documentation, labelnames=list(label_names or []), registry=registry or prom.REGISTRY
        )

    def labels(self, **labels: str):
        self._checker.validate(labels)
        return self._metric.labels(**labels)


class SafeHistogram:
    """Histogram wrapper that validates label names against an allowlist."""

    def __init__(
        self,
        name: str,
        documentation: str,
        *,
        label_names: Sequence[str] | None = None,
        registry: prom.CollectorRegistry | None = None,
        buckets: Sequence[float] | None = None,
    ) -> None:
        self._checker = _LabelChecker(label_names or [])
        self._metric = prom.Histogram(
            name,
            documentation,
            labelnames=list(label_names or []),
            registry=registry or prom.REGISTRY,
            buckets=list(buckets) if buckets is not None else prom.Histogram.DEFAULT_BUCKETS,
        )

    def labels(self, **labels: str):
        self._checker.validate(labels)
        return self._metric.labels(**labels)


class ClientMetrics:
    """Counters and latency histogram recorded by the executor."""

    def __init__(self, registry: prom.CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else prom.CollectorRegistry()
        self.operations = SafeCounter(
            "nosqlkit_operations_total",
            "Completed operations by kind and outcome",
            label_names=["op", "outcome"],
            registry=self.registry,
        )
        self.retries = SafeCounter(
            "nosqlkit_retries_total",
            "Retried attempts by operation kind and error kind",
            label_names=["op", "kind"],
            registry=self.registry,
        )
        self.latency = SafeHistogram(
            "nosqlkit_operation_seconds",
            "End-to-end operation latency including retries",
            label_names=["op"],
            registry=self.registry,
        )
        self.rate_limit_delay = SafeCounter(
            "nosqlkit_rate_limit_delay_ms_total",
            "Time spent waiting on client-side rate limiters",
            label_names=["direction"],
            registry=self.registry,
        )

    def observe(self, op: str, outcome: str, elapsed_ms: int) -> None:
        self.operations.labels(op=op, outcome=outcome).inc()
        self.latency.labels(op=op).observe(max(0, elapsed_ms) / 1000.0)

    def retry(self, op: str, kind: str) -> None:
        self.retries.labels(op=op, kind=kind).inc()

    def limiter_delay(self, read_ms: int, write_ms: int) -> None:
        if read_ms:
            self.rate_limit_delay.labels(direction="read").inc(read_ms)
        if write_ms:
            self.rate_limit_delay.labels(direction="write").inc(write_ms)

    def sample(self, name: str, labels: Mapping[str, str] | None = None) -> Any:
        """Current value of a sample (tests and diagnostics)."""
        return self.registry.get_sample_value(name, dict(labels or {}))
