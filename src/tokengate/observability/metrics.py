"""In-process metrics for the authorization server.

Services record counters (tokens issued, revoked, introspected, failed client
authentications, storage fallbacks) and the HTTP middleware records request
latency. ``GET /oauth/metrics`` renders everything in the Prometheus text
exposition format; there is no push or scrape agent inside the process.

Example:
    >>> from tokengate.observability.metrics import get_metrics
    >>> metrics = get_metrics()
    >>> metrics.increment_counter("tokengate_tokens_issued_total", {"grant_type": "refresh_token"})
    >>> "tokengate_tokens_issued_total" in metrics.export_prometheus()
    True
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import ClassVar

LabelKey = tuple[tuple[str, str], ...]

DEFAULT_LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    return tuple(sorted((labels or {}).items()))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _render_labels(labels: LabelKey, *extra: tuple[str, str]) -> str:
    pairs = [*labels, *extra]
    if not pairs:
        return ""
    return "{" + ",".join(f'{name}="{_escape(value)}"' for name, value in pairs) + "}"


@dataclass
class Counter:
    """Monotonic counter, one value per label set."""

    name: str
    help_text: str
    values: dict[LabelKey, float] = field(default_factory=dict)

    def increment(self, labels: dict[str, str] | None = None, value: float = 1.0) -> None:
        key = _label_key(labels)
        self.values[key] = self.values.get(key, 0.0) + value

    def get(self, labels: dict[str, str] | None = None) -> float:
        return self.values.get(_label_key(labels), 0.0)

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} counter"]
        if not self.values:
            lines.append(f"{self.name} 0")
        for labels, value in self.values.items():
            lines.append(f"{self.name}{_render_labels(labels)} {value}")
        return lines


@dataclass
class _Series:
    # non-cumulative: bucket_counts[i] counts observations in (bounds[i-1], bounds[i]]
    bucket_counts: list[float]
    total: float = 0.0
    count: float = 0.0


@dataclass
class Histogram:
    """Latency histogram with fixed upper bounds."""

    name: str
    help_text: str
    buckets: tuple[float, ...] = DEFAULT_LATENCY_BUCKETS
    series: dict[LabelKey, _Series] = field(default_factory=dict)

    def observe(self, value: float, labels: dict[str, str] | None = None) -> None:
        key = _label_key(labels)
        data = self.series.get(key)
        if data is None:
            data = self.series[key] = _Series(bucket_counts=[0.0] * len(self.buckets))
        for index, bound in enumerate(self.buckets):
            if value <= bound:
                data.bucket_counts[index] += 1.0
                break
        data.total += value
        data.count += 1.0

    def get_count(self, labels: dict[str, str] | None = None) -> float:
        data = self.series.get(_label_key(labels))
        return data.count if data is not None else 0.0

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} histogram"]
        series = self.series or {(): _Series(bucket_counts=[0.0] * len(self.buckets))}
        for labels, data in series.items():
            cumulative = 0.0
            for bound, observed in zip(self.buckets, data.bucket_counts):
                cumulative += observed
                lines.append(
                    f"{self.name}_bucket{_render_labels(labels, ('le', str(bound)))} {cumulative}"
                )
            lines.append(f"{self.name}_bucket{_render_labels(labels, ('le', '+Inf'))} {data.count}")
            lines.append(f"{self.name}_sum{_render_labels(labels)} {data.total}")
            lines.append(f"{self.name}_count{_render_labels(labels)} {data.count}")
        return lines


class MetricsCollector:
    """Thread-safe registry of the tokengate counters and histograms.

    Only the metrics declared below exist; recording an unknown name is a
    no-op so a typo never creates a stray series.
    """

    COUNTERS: ClassVar[dict[str, str]] = {
        "tokengate_requests_total": "Total number of OAuth endpoint requests",
        "tokengate_requests_error_total": "Total number of OAuth requests answered with an error",
        "tokengate_tokens_issued_total": "Total number of token pairs issued",
        "tokengate_tokens_revoked_total": "Total number of token records revoked",
        "tokengate_introspections_total": "Total number of introspection verdicts computed",
        "tokengate_introspection_cache_hits_total": "Total number of introspection cache hits",
        "tokengate_auth_failures_total": "Total number of client or bearer authentication failures",
        "tokengate_storage_fallbacks_total": "Total number of switches to the in-memory token store",
    }

    HISTOGRAMS: ClassVar[dict[str, str]] = {
        "tokengate_request_duration_seconds": "OAuth request processing duration in seconds",
    }

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters = {name: Counter(name, help_text) for name, help_text in self.COUNTERS.items()}
        self._histograms = {
            name: Histogram(name, help_text) for name, help_text in self.HISTOGRAMS.items()
        }
        self._started = time.time()

    def increment_counter(
        self, name: str, labels: dict[str, str] | None = None, value: float = 1.0
    ) -> None:
        with self._lock:
            counter = self._counters.get(name)
            if counter is not None:
                counter.increment(labels, value)

    def observe_histogram(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        with self._lock:
            histogram = self._histograms.get(name)
            if histogram is not None:
                histogram.observe(value, labels)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            counter = self._counters.get(name)
            return counter.get(labels) if counter is not None else 0.0

    def get_histogram_count(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            histogram = self._histograms.get(name)
            return histogram.get_count(labels) if histogram is not None else 0.0

    def export_prometheus(self) -> str:
        """Render every metric plus process uptime as Prometheus text."""
        with self._lock:
            lines: list[str] = []
            for counter in self._counters.values():
                lines.extend(counter.render())
            for histogram in self._histograms.values():
                lines.extend(histogram.render())
            uptime = time.time() - self._started
        lines.append("# HELP tokengate_process_uptime_seconds Time since server start")
        lines.append("# TYPE tokengate_process_uptime_seconds gauge")
        lines.append(f"tokengate_process_uptime_seconds {uptime:.3f}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Zero every metric. Used by tests."""
        with self._lock:
            for counter in self._counters.values():
                counter.values.clear()
            for histogram in self._histograms.values():
                histogram.series.clear()


_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics() -> MetricsCollector:
    """Process-wide collector, created on first use."""
    global _collector
    with _collector_lock:
        if _collector is None:
            _collector = MetricsCollector()
        return _collector


def reset_metrics() -> None:
    with _collector_lock:
        if _collector is not None:
            _collector.reset()
