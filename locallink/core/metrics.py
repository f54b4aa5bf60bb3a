"""
Metrics for LocalLink.

Prometheus-compatible in-process metrics:
- Lifecycle transition outcomes
- Store failures
- Sync engine snapshot deliveries
- Connected WebSocket clients
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class MetricValue:
    """Single metric value with metadata."""

    value: float
    labels: dict[str, str] = field(default_factory=dict)


class Counter:
    """Prometheus-style counter metric."""

    def __init__(self, name: str, description: str, labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._values: dict[tuple, float] = defaultdict(float)

    def inc(self, amount: float = 1, **labels) -> None:
        key = self._labels_to_key(labels)
        self._values[key] += amount

    def _labels_to_key(self, labels: dict) -> tuple:
        return tuple(labels.get(name, "") for name in self.label_names)

    def get(self, **labels) -> float:
        return self._values.get(self._labels_to_key(labels), 0)

    def collect(self) -> list[MetricValue]:
        return [
            MetricValue(value=value, labels=dict(zip(self.label_names, key)))
            for key, value in self._values.items()
        ]


class Gauge(Counter):
    """Prometheus-style gauge metric."""

    def set(self, value: float, **labels) -> None:
        self._values[self._labels_to_key(labels)] = value

    def dec(self, amount: float = 1, **labels) -> None:
        self._values[self._labels_to_key(labels)] -= amount


class MetricsRegistry:
    """Central registry for all metrics."""

    def __init__(self):
        self._metrics: dict[str, Counter] = {}
        self._start_time = datetime.now(timezone.utc)

        self.transitions_total = self.counter(
            "locallink_transitions_total",
            "Lifecycle operations by outcome",
            ["operation", "outcome"],
        )
        self.store_errors_total = self.counter(
            "locallink_store_errors_total", "Failed document store calls", ["operation"]
        )
        self.snapshots_total = self.counter(
            "locallink_snapshots_total", "Merged market snapshots delivered"
        )
        self.ws_connections = self.gauge(
            "locallink_ws_connections", "Connected WebSocket clients"
        )

    def counter(self, name: str, description: str, labels: list[str] | None = None) -> Counter:
        if name not in self._metrics:
            self._metrics[name] = Counter(name, description, labels)
        return self._metrics[name]

    def gauge(self, name: str, description: str, labels: list[str] | None = None) -> Gauge:
        if name not in self._metrics:
            self._metrics[name] = Gauge(name, description, labels)
        metric = self._metrics[name]
        assert isinstance(metric, Gauge)
        return metric

    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self._start_time).total_seconds()

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = [
            "# HELP locallink_uptime_seconds Service uptime in seconds",
            "# TYPE locallink_uptime_seconds gauge",
            f"locallink_uptime_seconds {self.uptime_seconds():.2f}",
            "",
        ]

        for name, metric in self._metrics.items():
            kind = "gauge" if isinstance(metric, Gauge) else "counter"
            lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {kind}")
            for mv in metric.collect():
                if mv.labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in mv.labels.items())
                    lines.append(f"{name}{{{label_str}}} {mv.value}")
                else:
                    lines.append(f"{name} {mv.value}")
            lines.append("")

        return "\n".join(lines)

    def get_summary(self) -> dict[str, Any]:
        return {
            "uptime_hours": round(self.uptime_seconds() / 3600, 2),
            "transitions": sum(self.transitions_total._values.values()),
            "store_errors": sum(self.store_errors_total._values.values()),
            "snapshots": self.snapshots_total.get(),
        }


metrics = MetricsRegistry()


def track_transition(operation: str, outcome: str) -> None:
    metrics.transitions_total.inc(operation=operation, outcome=outcome)


def track_store_error(operation: str) -> None:
    metrics.store_errors_total.inc(operation=operation)
