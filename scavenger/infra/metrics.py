"""
In-process metrics for fleet passes.

Counters and histograms keyed by metric name plus sorted labels.  The
engine reports through ``ScavengeMetrics`` so metric names live in one
place; ``get_metrics_collector().get_metrics()`` returns a plain dict
snapshot for logs or an admin endpoint.
"""
from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, Optional

from scavenger.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Counter:
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Histogram:
    """Distribution of observed values (delays, durations)"""
    values: list[float] = field(default_factory=list)

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        count = len(self.values)
        if not count:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        ordered = sorted(self.values)
        total = sum(ordered)
        return {
            "count": count,
            "sum": total,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": total / count,
            "p95": ordered[min(int(count * 0.95), count - 1)],
        }


class MetricsCollector:
    """Thread-safe counter/histogram registry; a disabled collector drops everything."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._lock = Lock()
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)

    def inc_counter(self, name: str, amount: int = 1, labels: Optional[dict] = None) -> None:
        if not self.enabled:
            return
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: Optional[dict] = None) -> None:
        if not self.enabled:
            return
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_counter(self, name: str, **labels) -> int:
        key = self._make_key(name, labels or None)
        with self._lock:
            counter = self._counters.get(key)
            return counter.value if counter else 0

    def get_metrics(self) -> dict:
        with self._lock:
            return {
                "counters": {k: c.value for k, c in self._counters.items()},
                "histograms": {k: h.get_stats() for k, h in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.debug("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: Optional[dict]) -> str:
        if not labels:
            return name
        rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{rendered}}}"


def _build_collector() -> MetricsCollector:
    from scavenger.config import settings
    return MetricsCollector(enabled=settings.enable_metrics)


_metrics = _build_collector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager recording elapsed wall time into a histogram"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.elapsed: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._started = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._started is not None:
            self.elapsed = time.monotonic() - self._started
            observe_histogram(self.metric_name, self.elapsed, **self.labels)


class ScavengeMetrics:
    """Named metrics emitted by the scavenging engine"""

    @staticmethod
    def pass_started() -> None:
        inc_counter("scavenge_passes_total")

    @staticmethod
    def pass_aborted() -> None:
        inc_counter("scavenge_pass_aborted")

    @staticmethod
    def track_pass() -> Timer:
        return Timer("scavenge_pass_duration_seconds")

    @staticmethod
    def slot_confirmed() -> None:
        inc_counter("scavenge_dispatch_confirmed")

    @staticmethod
    def slot_failed() -> None:
        inc_counter("scavenge_dispatch_failed")

    @staticmethod
    def slot_skipped() -> None:
        inc_counter("scavenge_slot_skipped")

    @staticmethod
    def round2_retry() -> None:
        inc_counter("scavenge_round2_retries")

    @staticmethod
    def observation_timeout() -> None:
        inc_counter("scavenge_observation_timeouts")

    @staticmethod
    def site_skipped(reason: str) -> None:
        inc_counter("scavenge_sites_skipped", reason=reason)

    @staticmethod
    def next_poll_delay(seconds: int) -> None:
        observe_histogram("scavenge_next_poll_delay_seconds", seconds)
