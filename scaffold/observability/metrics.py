"""
In-process metrics: HTTP golden signals plus ad-hoc counters and gauges.

Counters, gauges and histograms are kept in memory and exported on
``/metrics`` in Prometheus text exposition format or on ``/metrics/json``
as a JSON snapshot.
"""

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Latency buckets in milliseconds
DEFAULT_BUCKETS: Tuple[float, ...] = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)

# HELP / TYPE metadata for the metrics the HTTP middleware records
_METRIC_HELP: Dict[str, Tuple[str, str]] = {
    "http_requests_total": ("counter", "Total HTTP requests received"),
    "http_errors_total": ("counter", "HTTP responses with status >= 400"),
    "http_requests_in_flight": ("gauge", "HTTP requests currently being served"),
    "http_request_duration_ms": ("histogram", "HTTP request latency in milliseconds"),
}

# ── Metric types ─────────────────────────────────────────────────


@dataclass
class _Counter:
    """Monotonically increasing counter."""

    value: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counters can only increase")
        with self.lock:
            self.value += amount


@dataclass
class _Gauge:
    """Value that can go up and down."""

    value: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)

    def set(self, value: float) -> None:
        with self.lock:
            self.value = value

    def add(self, amount: float) -> None:
        with self.lock:
            self.value += amount


@dataclass
class _Histogram:
    """Cumulative bucket counts plus count / sum."""

    bounds: Tuple[float, ...] = DEFAULT_BUCKETS
    count: int = 0
    total: float = 0.0
    counts: List[int] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self):
        # one slot per bound plus +Inf
        self.counts = [0] * (len(self.bounds) + 1)

    def observe(self, value: float) -> None:
        with self.lock:
            self.count += 1
            self.total += value
            for i, bound in enumerate(self.bounds):
                if value <= bound:
                    self.counts[i] += 1
            self.counts[-1] += 1

    def buckets(self) -> List[Tuple[str, int]]:
        labels = [str(b) for b in self.bounds] + ["+Inf"]
        return list(zip(labels, self.counts))


def _series_key(name: str, labels: Optional[Dict[str, str]]) -> str:
    """``name{k="v",...}`` with labels sorted so the key is deterministic."""
    if not labels:
        return name
    body = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{name}{{{body}}}"


def _split_key(key: str) -> Tuple[str, str]:
    if "{" not in key:
        return key, ""
    base, rest = key.split("{", 1)
    return base, rest.rstrip("}")


# ── Collector singleton ──────────────────────────────────────────


class MetricsCollector:
    """Thread-safe in-process metrics store.

    Usage::

        mc = MetricsCollector()
        mc.inc("http_requests_total", labels={"method": "GET"})
        mc.observe("http_request_duration_ms", 42.5, labels={"route": "/api/v1/users"})
        mc.gauge_set("build_info", 1, labels={"version": "0.1.0"})
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsCollector":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        self._counters: Dict[str, _Counter] = defaultdict(_Counter)
        self._gauges: Dict[str, _Gauge] = defaultdict(_Gauge)
        self._histograms: Dict[str, _Histogram] = defaultdict(_Histogram)
        self.start_time = time.time()

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.start_time

    # ── Primitive updates ────────────────────────────────────────

    def inc(self, name: str, amount: float = 1.0, *, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment a counter."""
        self._counters[_series_key(name, labels)].inc(amount)

    def gauge_set(self, name: str, value: float, *, labels: Optional[Dict[str, str]] = None) -> None:
        """Set a gauge to an absolute value."""
        self._gauges[_series_key(name, labels)].set(value)

    def gauge_inc(self, name: str, amount: float = 1.0, *, labels: Optional[Dict[str, str]] = None) -> None:
        self._gauges[_series_key(name, labels)].add(amount)

    def gauge_dec(self, name: str, amount: float = 1.0, *, labels: Optional[Dict[str, str]] = None) -> None:
        self._gauges[_series_key(name, labels)].add(-amount)

    def observe(self, name: str, value: float, *, labels: Optional[Dict[str, str]] = None) -> None:
        """Record an observation in a histogram (e.g. latency in ms)."""
        self._histograms[_series_key(name, labels)].observe(value)

    # ── HTTP golden signals ──────────────────────────────────────

    def request_started(self) -> None:
        self.gauge_inc("http_requests_in_flight")

    def request_finished(self, method: str, route: str, status: int, duration_ms: float) -> None:
        """Record traffic, latency and errors for one completed request."""
        self.gauge_dec("http_requests_in_flight")
        labels = {"method": method, "route": route, "status": str(status)}
        self.inc("http_requests_total", labels=labels)
        self.observe("http_request_duration_ms", duration_ms, labels={"method": method, "route": route})
        if status >= 400:
            self.inc("http_errors_total", labels=labels)

    # ── Snapshot / export ────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """Return a JSON-friendly snapshot of all metrics."""
        return {
            "uptime_seconds": round(self.uptime_seconds, 1),
            "counters": {k: c.value for k, c in self._counters.items()},
            "gauges": {k: g.value for k, g in self._gauges.items()},
            "histograms": {
                k: {
                    "count": h.count,
                    "sum": round(h.total, 2),
                    "avg": round(h.total / h.count, 2) if h.count else 0,
                    "buckets": dict(h.buckets()),
                }
                for k, h in self._histograms.items()
            },
        }

    def prometheus_exposition(self) -> str:
        """Return metrics in Prometheus text exposition format."""
        lines: List[str] = [
            "# HELP process_uptime_seconds Process uptime in seconds",
            "# TYPE process_uptime_seconds gauge",
            f"process_uptime_seconds {self.uptime_seconds:.1f}",
        ]
        described = set()

        def describe(base: str) -> None:
            if base in described or base not in _METRIC_HELP:
                return
            kind, text = _METRIC_HELP[base]
            lines.append(f"# HELP {base} {text}")
            lines.append(f"# TYPE {base} {kind}")
            described.add(base)

        for key, c in sorted(self._counters.items()):
            describe(_split_key(key)[0])
            lines.append(f"{key} {c.value}")

        for key, g in sorted(self._gauges.items()):
            describe(_split_key(key)[0])
            lines.append(f"{key} {g.value}")

        for key, h in sorted(self._histograms.items()):
            base, labels = _split_key(key)
            describe(base)
            sep = "," if labels else ""
            for le, count in h.buckets():
                lines.append(f'{base}_bucket{{{labels}{sep}le="{le}"}} {count}')
            suffix = f"{{{labels}}}" if labels else ""
            lines.append(f"{base}_sum{suffix} {h.total:.2f}")
            lines.append(f"{base}_count{suffix} {h.count}")

        return "\n".join(lines) + "\n"

    # ── Reset (testing) ──────────────────────────────────────────

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next call starts empty."""
        with cls._lock:
            cls._instance = None
