"""Prometheus metrics for heartbeat writes, sweep ticks and alert delivery."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram


class LivenessMetrics:
    """Metric bundle bound to one registry.

    Components that are not handed a bundle create their own on a private
    registry, so constructing several of them never registers a series twice.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self.heartbeat_writes = Counter(
            "liveness_heartbeat_writes_total",
            "Heartbeat write attempts by kind and outcome",
            ["kind", "outcome"],
            registry=self.registry,
        )
        self.heartbeats_deferred = Counter(
            "liveness_heartbeats_deferred_total",
            "Activity events folded into a later heartbeat write",
            registry=self.registry,
        )
        self.sweep_ticks = Counter(
            "liveness_sweep_ticks_total",
            "Completed stale-sweep ticks",
            ["result"],
            registry=self.registry,
        )
        self.sweep_duration = Histogram(
            "liveness_sweep_duration_seconds",
            "Wall-clock duration of a stale-sweep tick",
            registry=self.registry,
        )
        self.alert_decisions = Counter(
            "liveness_alert_decisions_total",
            "Lifecycle decisions taken by the sweep",
            ["decision"],
            registry=self.registry,
        )
        self.notification_sends = Counter(
            "liveness_notification_sends_total",
            "Per-endpoint notification sends",
            ["outcome"],
            registry=self.registry,
        )
