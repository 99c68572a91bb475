# utils/metrics.py
"""
Prometheus-style metrics for the bar cache engine.

There is no process-wide registry: every ``EngineSession`` owns a
``SessionMetrics`` (and therefore its own ``MetricsRegistry``), so two
host sessions in one process never share counters.
"""
from __future__ import annotations

import bisect
import itertools
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from core.types import FailureKind
from utils.logger import get_logger

log = get_logger(__name__)

_LABEL_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_NAME_ILLEGAL = re.compile(r"[^a-zA-Z0-9_:]")

# Latency-oriented buckets, in seconds
DEFAULT_BUCKETS: tuple[float, ...] = (
    0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0,
)

Labels = dict[str, str] | None


def _metric_name(name: str) -> str:
    """Prometheus-safe metric name."""
    cleaned = _NAME_ILLEGAL.sub("_", name) or "_unnamed"
    return f"_{cleaned}" if cleaned[0].isdigit() else cleaned


def _series_key(name: str, labels: Labels) -> str:
    if not labels:
        return name
    for label, value in labels.items():
        if not _LABEL_NAME.match(label):
            raise ValueError(f"Invalid label name {label!r}")
        if not isinstance(value, str):
            raise TypeError(f"Label {label!r} value must be str, got {type(value).__name__}")
    body = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{name}{{{body}}}"


def _split_key(key: str) -> tuple[str, str]:
    """'name{a="b"}' -> ('name', 'a="b"')."""
    name, _, rest = key.partition("{")
    return name, rest[:-1] if rest else ""


@dataclass
class _Histogram:
    bounds: tuple[float, ...]
    buckets: list[int] = field(default_factory=list)
    count: int = 0
    total: float = 0.0

    def __post_init__(self) -> None:
        self.bounds = tuple(sorted(self.bounds))
        self.buckets = [0] * len(self.bounds)

    def observe(self, value: float) -> None:
        # non-cumulative per bucket; cumulated on export
        idx = bisect.bisect_left(self.bounds, value)
        if idx < len(self.buckets):
            self.buckets[idx] += 1
        self.count += 1
        self.total += value


class MetricsRegistry:
    """
    Thread-safe counters, gauges and histograms keyed Prometheus-style
    (``name{label="value",...}``). Histograms are the first to go when
    the number of series exceeds ``max_keys``.
    """

    def __init__(self, max_keys: int = 10000) -> None:
        self._lock = threading.RLock()
        self._max_keys = max_keys
        self._counters: dict[str, float] = {}
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, _Histogram] = {}
        self._types: dict[str, str] = {}
        self._help: dict[str, str] = {}

    def _record(
        self,
        kind: str,
        name: str,
        labels: Labels,
        help_text: str,
        update: Callable[[str], None],
    ) -> None:
        name = _metric_name(name)
        key = _series_key(name, labels)
        with self._lock:
            update(key)
            self._types[name] = kind
            if help_text:
                self._help[name] = help_text
            self._evict_over_limit()

    def inc_counter(
        self,
        name: str,
        value: float = 1.0,
        labels: Labels = None,
        help_text: str = "",
    ) -> None:
        if value < 0:
            raise ValueError("Counter can only be incremented (value >= 0)")

        def _inc(key: str) -> None:
            self._counters[key] = self._counters.get(key, 0.0) + value

        self._record("counter", name, labels, help_text, _inc)

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: Labels = None,
        help_text: str = "",
    ) -> None:
        self._record(
            "gauge", name, labels, help_text,
            lambda key: self._gauges.__setitem__(key, float(value)),
        )

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: Labels = None,
        buckets: tuple[float, ...] | None = None,
        help_text: str = "",
    ) -> None:
        def _observe(key: str) -> None:
            hist = self._histograms.get(key)
            if hist is None:
                hist = self._histograms[key] = _Histogram(buckets or DEFAULT_BUCKETS)
            hist.observe(value)

        self._record("histogram", name, labels, help_text, _observe)

    def counter(self, name: str, labels: Labels = None) -> float:
        key = _series_key(_metric_name(name), labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def gauge(self, name: str, labels: Labels = None) -> float | None:
        key = _series_key(_metric_name(name), labels)
        with self._lock:
            return self._gauges.get(key)

    def _evict_over_limit(self) -> None:
        while self._histograms and (
            len(self._counters) + len(self._gauges) + len(self._histograms)
            > self._max_keys
        ):
            victim = next(iter(self._histograms))
            del self._histograms[victim]
            log.debug("Evicted histogram key: %s", victim)

    def reset(self) -> None:
        with self._lock:
            for store in (self._counters, self._gauges, self._histograms, self._types, self._help):
                store.clear()

    def get_all(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {
                    key: {
                        "count": h.count,
                        "sum": h.total,
                        "avg": h.total / h.count if h.count else 0,
                    }
                    for key, h in self._histograms.items()
                },
            }

    def to_prometheus(self) -> str:
        """Export everything in the text exposition format."""
        out: list[str] = []
        described: set[str] = set()

        def _describe(name: str) -> None:
            if name in described:
                return
            described.add(name)
            if self._help.get(name):
                out.append(f"# HELP {name} {self._help[name]}")
            out.append(f"# TYPE {name} {self._types.get(name, 'untyped')}")

        with self._lock:
            for series in (self._counters, self._gauges):
                for key in sorted(series):
                    _describe(_split_key(key)[0])
                    out.append(f"{key} {float(series[key])}")

            for key in sorted(self._histograms):
                hist = self._histograms[key]
                name, labels = _split_key(key)
                _describe(name)
                sep = "," if labels else ""
                running = 0
                for bound, hits in zip(hist.bounds, hist.buckets):
                    running += hits
                    out.append(f'{name}_bucket{{{labels}{sep}le="{bound}"}} {float(running)}')
                out.append(f'{name}_bucket{{{labels}{sep}le="+Inf"}} {float(hist.count)}')
                suffix = f"{{{labels}}}" if labels else ""
                out.append(f"{name}_count{suffix} {float(hist.count)}")
                out.append(f"{name}_sum{suffix} {float(hist.total)}")

        return "\n".join(out) + ("\n" if out else "")


class SessionMetrics:
    """
    Session-scoped metrics and identity service.

    Replaces process-wide static counters: instance ids and per-owner
    problem counters live here and die with the session.
    """

    def __init__(self, session_id: str = "default") -> None:
        self.session_id = session_id
        self.registry = MetricsRegistry()
        self._ids = itertools.count()
        self._ids_lock = threading.Lock()
        self._problems: dict[str, int] = {}
        self._problems_lock = threading.Lock()

    def next_instance_id(self) -> int:
        """Monotonic id, unique within this session, starting at 0."""
        with self._ids_lock:
            return next(self._ids)

    def _labels(self, scope: str) -> dict[str, str]:
        return {"session": self.session_id, "scope": scope}

    def record_hit(self, scope: str) -> None:
        self.registry.inc_counter(
            "barcache_hits_total", labels=self._labels(scope),
            help_text="Direct cache hits",
        )

    def record_miss(self, scope: str) -> None:
        self.registry.inc_counter(
            "barcache_misses_total", labels=self._labels(scope),
            help_text="Lookups that found no valid entry",
        )

    def record_recovery(self, scope: str) -> None:
        self.registry.inc_counter(
            "barcache_recoveries_total", labels=self._labels(scope),
            help_text="First-bar recoveries from earlier entries",
        )

    def record_compute(self, scope: str, seconds: float) -> None:
        self.registry.inc_counter(
            "barcache_computes_total", labels=self._labels(scope),
            help_text="Compute callback invocations",
        )
        self.registry.observe_histogram(
            "barcache_compute_seconds", seconds, labels=self._labels(scope),
            help_text="Compute callback latency",
        )

    def record_failure(self, kind: FailureKind, scope: str) -> None:
        labels = self._labels(scope)
        labels["kind"] = kind.value
        self.registry.inc_counter(
            "barcache_failures_total", labels=labels,
            help_text="Evaluation failures by kind",
        )

    def record_shared_write(self, key: str) -> None:
        self.registry.inc_counter(
            "barcache_shared_writes_total",
            labels={"session": self.session_id},
            help_text="Snapshots forwarded to the shared store",
        )
        log.debug("Shared write forwarded for %s", key)

    def set_series_size(self, key: str, size: int) -> None:
        self.registry.set_gauge(
            "barcache_series_entries", float(size),
            labels={"session": self.session_id, "key": key},
        )

    def bump_problem(self, owner: str) -> int:
        """Increment and return the problem counter for ``owner``."""
        with self._problems_lock:
            count = self._problems.get(owner, 0) + 1
            self._problems[owner] = count
        self.registry.inc_counter(
            "barcache_problems_total",
            labels={"session": self.session_id},
        )
        return count

    def reset_problem(self, owner: str) -> None:
        with self._problems_lock:
            self._problems[owner] = 0

    def problem_count(self, owner: str) -> int:
        with self._problems_lock:
            return self._problems.get(owner, 0)

    def snapshot(self) -> dict[str, Any]:
        data = self.registry.get_all()
        with self._problems_lock:
            data["problems"] = dict(self._problems)
        return data
