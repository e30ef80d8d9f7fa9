"""
Metrics collection for self-healing and testing sessions.

Counters, gauges and duration histograms are kept in memory and exported
as JSON or in the Prometheus text format.
"""

import json
import logging
import threading
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Tuple

HEALING_DURATION_BUCKETS = (0.1, 0.5, 1, 2, 5, 10)
PHASE_DURATION_BUCKETS = (1, 5, 15, 30, 60, 120, 300, 600)

Labels = Tuple[Tuple[str, str], ...]


@dataclass
class MetricPoint:
    """A single observed value."""
    timestamp: datetime
    value: float


@dataclass
class HealingMetrics:
    """Aggregated healing and session metrics."""
    total_healing_attempts: int = 0
    successful_healings: int = 0
    failed_healings: int = 0
    auto_applied_healings: int = 0
    suggested_healings: int = 0
    success_rate: float = 0.0
    avg_healing_time: float = 0.0

    # Winning strategy -> count
    strategy_successes: Dict[str, int] = field(default_factory=dict)
    # no_candidate / timeout / disabled -> count
    failure_reasons: Dict[str, int] = field(default_factory=dict)

    avg_phase_durations: Dict[str, float] = field(default_factory=dict)
    phase_failures: Dict[str, int] = field(default_factory=dict)


class MetricsCollector:
    """Thread-safe metrics collector for healing attempts and session phases."""

    def __init__(self, retention_hours: int = 24):
        """
        Args:
            retention_hours: How long individual observations are kept for averages
        """
        self.retention_hours = retention_hours
        self.retention_delta = timedelta(hours=retention_hours)

        self._lock = threading.RLock()
        self._counters: Dict[Tuple[str, Labels], float] = defaultdict(float)
        self._gauges: Dict[Tuple[str, Labels], float] = {}
        self._histograms: Dict[Tuple[str, Labels], Deque[MetricPoint]] = defaultdict(lambda: deque(maxlen=1000))

        # Cumulative histogram state for export; unaffected by retention
        self._bucket_counts: Dict[Tuple[str, Labels], List[int]] = {}
        self._sums: Dict[Tuple[str, Labels], float] = defaultdict(float)
        self._counts: Dict[Tuple[str, Labels], int] = defaultdict(int)
        self._buckets: Dict[str, Tuple[float, ...]] = {
            "healing_duration_seconds": HEALING_DURATION_BUCKETS,
            "phase_duration_seconds": PHASE_DURATION_BUCKETS,
        }

        self.logger = logging.getLogger("testmaster.metrics")

    # =================== PRIMITIVES ===================

    def increment_counter(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._counters[self._make_key(name, labels)] += value

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._gauges[self._make_key(name, labels)] = value

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record an observation; also feeds the cumulative Prometheus buckets."""
        with self._lock:
            key = self._make_key(name, labels)
            self._histograms[key].append(MetricPoint(timestamp=datetime.now(), value=value))
            self._sums[key] += value
            self._counts[key] += 1
            buckets = self._buckets.get(name)
            if buckets:
                counts = self._bucket_counts.setdefault(key, [0] * len(buckets))
                for i, bound in enumerate(buckets):
                    if value <= bound:
                        counts[i] += 1

    # =================== DOMAIN EVENTS ===================

    def record_healing_attempt(self, strategy: Optional[str], success: bool, duration: float,
                               auto_applied: bool = False, reason: Optional[str] = None) -> None:
        """
        Record one coordinator attempt.

        Args:
            strategy: Winning strategy, None when nothing was proposed
            success: Whether a candidate above the suggestion minimum was found
            duration: Wall time of the attempt in seconds
            auto_applied: Whether the candidate cleared the auto-apply threshold
            reason: Failure reason when unsuccessful
        """
        strategy_label = strategy or "none"
        with self._lock:
            self.increment_counter("healing_attempts_total",
                                   labels={"strategy": strategy_label, "success": str(success).lower()})
            self.record_histogram("healing_duration_seconds", duration, labels={"strategy": strategy_label})
            if success:
                self.increment_counter("healing_auto_applied_total" if auto_applied
                                       else "healing_suggested_total")
            else:
                self.increment_counter("healing_failures_total", labels={"reason": reason or "unknown"})
            self.set_gauge("healing_success_rate", self._success_rate())

    def record_phase(self, phase: str, duration: float, success: bool) -> None:
        """Record a completed or failed session phase."""
        with self._lock:
            self.record_histogram("phase_duration_seconds", duration, labels={"phase": phase})
            if not success:
                self.increment_counter("phase_failures_total", labels={"phase": phase})

    def set_active_sessions(self, count: int) -> None:
        self.set_gauge("active_sessions", count)

    # =================== AGGREGATES ===================

    def get_current_metrics(self) -> HealingMetrics:
        """Current aggregated metrics."""
        with self._lock:
            successful = failed = auto_applied = suggested = 0
            strategy_successes: Dict[str, int] = {}
            failure_reasons: Dict[str, int] = {}
            phase_failures: Dict[str, int] = {}

            for (name, labels), value in self._counters.items():
                label_map = dict(labels)
                if name == "healing_attempts_total":
                    if label_map.get("success") == "true":
                        successful += int(value)
                        strategy = label_map["strategy"]
                        strategy_successes[strategy] = strategy_successes.get(strategy, 0) + int(value)
                    else:
                        failed += int(value)
                elif name == "healing_auto_applied_total":
                    auto_applied += int(value)
                elif name == "healing_suggested_total":
                    suggested += int(value)
                elif name == "healing_failures_total":
                    failure_reasons[label_map["reason"]] = int(value)
                elif name == "phase_failures_total":
                    phase_failures[label_map["phase"]] = int(value)

            healing_times = [p.value for (name, _), points in self._histograms.items()
                             if name == "healing_duration_seconds" for p in points]
            phase_times: Dict[str, List[float]] = defaultdict(list)
            for (name, labels), points in self._histograms.items():
                if name == "phase_duration_seconds":
                    phase_times[dict(labels)["phase"]].extend(p.value for p in points)

            total = successful + failed
            return HealingMetrics(
                total_healing_attempts=total,
                successful_healings=successful,
                failed_healings=failed,
                auto_applied_healings=auto_applied,
                suggested_healings=suggested,
                success_rate=successful / total if total else 0.0,
                avg_healing_time=sum(healing_times) / len(healing_times) if healing_times else 0.0,
                strategy_successes=strategy_successes,
                failure_reasons=failure_reasons,
                avg_phase_durations={
                    phase: sum(values) / len(values) for phase, values in phase_times.items() if values
                },
                phase_failures=phase_failures,
            )

    def export_metrics(self, format: str = "json") -> str:
        """Export metrics as ``json`` or ``prometheus`` text."""
        if format == "json":
            return json.dumps(asdict(self.get_current_metrics()), default=str, indent=2)
        elif format == "prometheus":
            return self._export_prometheus_format()
        else:
            raise ValueError(f"Unsupported export format: {format}")

    def cleanup_old_data(self) -> None:
        """Drop observations older than the retention period."""
        cutoff_time = datetime.now() - self.retention_delta
        with self._lock:
            for series in self._histograms.values():
                while series and series[0].timestamp < cutoff_time:
                    series.popleft()

    def _success_rate(self) -> float:
        successful = sum(v for (name, labels), v in self._counters.items()
                         if name == "healing_attempts_total" and dict(labels).get("success") == "true")
        total = sum(v for (name, _), v in self._counters.items() if name == "healing_attempts_total")
        return successful / total if total else 0.0

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict[str, str]] = None) -> Tuple[str, Labels]:
        return name, tuple(sorted((labels or {}).items()))

    @staticmethod
    def _format_labels(labels: Labels, extra: Optional[Tuple[str, str]] = None) -> str:
        pairs = list(labels) + ([extra] if extra else [])
        if not pairs:
            return ""
        return "{" + ",".join(f'{k}="{v}"' for k, v in pairs) + "}"

    def _export_prometheus_format(self) -> str:
        help_text = {
            "healing_attempts_total": ("counter", "Total number of self-healing attempts"),
            "healing_auto_applied_total": ("counter", "Healings applied without review"),
            "healing_suggested_total": ("counter", "Healings left for review"),
            "healing_failures_total": ("counter", "Healing attempts without a usable candidate"),
            "phase_failures_total": ("counter", "Session phases that failed"),
            "healing_success_rate": ("gauge", "Self-healing success rate (0-1)"),
            "active_sessions": ("gauge", "Testing sessions currently running"),
            "healing_duration_seconds": ("histogram", "Self-healing duration in seconds"),
            "phase_duration_seconds": ("histogram", "Session phase duration in seconds"),
        }
        lines: List[str] = []

        with self._lock:
            samples: Dict[str, List[str]] = defaultdict(list)
            for (name, labels), value in sorted(self._counters.items()):
                samples[name].append(f"{name}{self._format_labels(labels)} {value:g}")
            for (name, labels), value in sorted(self._gauges.items()):
                samples[name].append(f"{name}{self._format_labels(labels)} {value:g}")
            for (name, labels), count in sorted(self._counts.items()):
                buckets = self._buckets.get(name, ())
                bucket_counts = self._bucket_counts.get((name, labels), [0] * len(buckets))
                for bound, bucket_count in zip(buckets, bucket_counts):
                    samples[name].append(
                        f"{name}_bucket{self._format_labels(labels, ('le', f'{bound:g}'))} {bucket_count}")
                samples[name].append(f"{name}_bucket{self._format_labels(labels, ('le', '+Inf'))} {count}")
                samples[name].append(f"{name}_sum{self._format_labels(labels)} {self._sums[(name, labels)]:g}")
                samples[name].append(f"{name}_count{self._format_labels(labels)} {count}")

        for name, metric_lines in samples.items():
            metric_type, description = help_text.get(name, ("untyped", name))
            lines.append(f"# HELP {name} {description}")
            lines.append(f"# TYPE {name} {metric_type}")
            lines.extend(metric_lines)

        return "\n".join(lines) + "\n"


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
