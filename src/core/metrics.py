"""
Process-wide operational metrics, rendered as Prometheus text.

Separate from the per-session SimulationMetrics pushed to dashboards: these
aggregate across every session in the process and reset on restart.
"""

import threading
import time
from collections import defaultdict

LabelSet = tuple[tuple[str, str], ...]
SeriesKey = tuple[str, LabelSet]

# Observations kept per summary series before the oldest half is dropped
_SUMMARY_CAP = 1000

_HELP = {
    "agentsim_ticks_total": "Simulation ticks executed",
    "agentsim_tick_duration_seconds": "Wall time of one tick",
    "agentsim_interactions_total": "Agent interactions recorded",
    "agentsim_commands_total": "Session channel commands by outcome",
    "agentsim_sessions_active": "Open session channels",
    "agentsim_llm_requests_total": "Text generation requests by outcome",
    "agentsim_llm_latency_seconds": "Text generation request latency",
}


def _labels(labels: dict[str, str] | None) -> LabelSet:
    return tuple(sorted((labels or {}).items()))


def _render_labels(label_set: LabelSet) -> str:
    if not label_set:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in label_set) + "}"


class MetricsCollector:
    """Thread-safe counters, gauges, and summaries."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[SeriesKey, int] = defaultdict(int)
        self._gauges: dict[SeriesKey, float] = defaultdict(float)
        self._summaries: dict[SeriesKey, list[float]] = defaultdict(list)
        self._started = time.time()

    def increment(self, name: str, labels: dict[str, str] | None = None, value: int = 1):
        with self._lock:
            self._counters[(name, _labels(labels))] += value

    def add_gauge(self, name: str, labels: dict[str, str] | None = None, *, value: float):
        """Shift a gauge by a relative amount (+1 on open, -1 on close)."""
        with self._lock:
            self._gauges[(name, _labels(labels))] += value

    def observe(self, name: str, labels: dict[str, str] | None = None, *, value: float):
        key = (name, _labels(labels))
        with self._lock:
            values = self._summaries[key]
            values.append(value)
            if len(values) > _SUMMARY_CAP:
                self._summaries[key] = values[_SUMMARY_CAP // 2 :]

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters.get((name, _labels(labels)), 0)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges.get((name, _labels(labels)), 0.0)

    def get_summary(self, name: str, labels: dict[str, str] | None = None) -> dict[str, float]:
        """Count, sum, and mean of the retained observations."""
        with self._lock:
            values = list(self._summaries.get((name, _labels(labels)), []))
        total = sum(values)
        return {
            "count": len(values),
            "sum": total,
            "avg": total / len(values) if values else 0.0,
        }

    def prometheus_format(self) -> str:
        """Render every series in Prometheus text exposition format."""
        lines = [
            "# HELP agentsim_uptime_seconds Seconds since process start",
            "# TYPE agentsim_uptime_seconds gauge",
            f"agentsim_uptime_seconds {time.time() - self._started:.1f}",
        ]

        with self._lock:
            for kind, series in (("counter", self._counters), ("gauge", self._gauges)):
                seen: set[str] = set()
                for (name, label_set), value in sorted(series.items()):
                    if name not in seen:
                        seen.add(name)
                        lines.extend(self._header(name, kind))
                    lines.append(f"{name}{_render_labels(label_set)} {value}")

            seen = set()
            for (name, label_set), values in sorted(self._summaries.items()):
                if name not in seen:
                    seen.add(name)
                    lines.extend(self._header(name, "summary"))
                rendered = _render_labels(label_set)
                lines.append(f"{name}_count{rendered} {len(values)}")
                lines.append(f"{name}_sum{rendered} {sum(values):.4f}")

        return "\n".join(lines) + "\n"

    @staticmethod
    def _header(name: str, kind: str) -> list[str]:
        header = [f"# TYPE {name} {kind}"]
        if name in _HELP:
            header.insert(0, f"# HELP {name} {_HELP[name]}")
        return header


_collector: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get or create the process-wide collector."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
