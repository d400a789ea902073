import math
import re
import statistics
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol


class MetricKind(StrEnum):
    TREND = "trend"
    RATE = "rate"
    COUNTER = "counter"
    GAUGE = "gauge"


BUILTIN_KINDS: dict[str, MetricKind] = {
    "http_req_duration": MetricKind.TREND,
    "http_req_failed": MetricKind.RATE,
    "http_reqs": MetricKind.COUNTER,
    "iterations": MetricKind.COUNTER,
    "vus": MetricKind.GAUGE,
}

TREND_STATS = ("avg", "min", "med", "max", "p(90)", "p(95)", "p(99)")

KIND_AGGREGATORS: dict[MetricKind, frozenset[str]] = {
    MetricKind.TREND: frozenset({"avg", "min", "med", "max", "count"}),
    MetricKind.RATE: frozenset({"rate", "count"}),
    MetricKind.COUNTER: frozenset({"count", "rate"}),
    MetricKind.GAUGE: frozenset({"value", "min", "max"}),
}

_PERCENTILE = re.compile(r"^p\((\d+(?:\.\d+)?)\)$")


@dataclass(frozen=True)
class Sample:
    metric: str
    value: float
    tags: Mapping[str, str] = field(default_factory=dict)


class MetricsSink(Protocol):
    def record(self, sample: Sample) -> None: ...


def check_aggregator(kind: MetricKind, aggregator: str) -> None:
    """Raise ValueError unless ``aggregator`` can be computed for metrics of ``kind``.

    Percentiles are trend-only and must lie in 0..100.
    """
    match = _PERCENTILE.match(aggregator)
    if match is not None and kind is MetricKind.TREND:
        if float(match[1]) > 100:
            raise ValueError(f"percentile out of range: {aggregator}")
        return
    if aggregator not in KIND_AGGREGATORS[kind]:
        raise ValueError(f"aggregator {aggregator!r} is not defined for {kind} metrics")


def percentile(values: list[float], pct: float) -> float:
    """Nearest-rank percentile: the smallest value with at least ``pct``% of samples at or below it."""
    if not values:
        return 0.0
    if not 0 <= pct <= 100:
        raise ValueError(f"percentile out of range: {pct}")
    ordered = sorted(values)
    rank = max(1, math.ceil(pct * len(ordered) / 100))
    return ordered[rank - 1]


class MetricsAggregator:
    """Append-only in-memory store of samples, safe to share between VUs.

    Aggregates over an empty metric are 0. ``rate`` means the non-zero
    fraction for rate metrics and samples per second of run time for
    counters.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._samples: dict[str, list[Sample]] = {}
        self._kinds: dict[str, MetricKind] = {}
        self._started = clock()
        self._finished: float | None = None

    def register(self, metric: str, kind: MetricKind) -> None:
        with self._lock:
            self._kinds[metric] = kind

    def record(self, sample: Sample) -> None:
        with self._lock:
            self._samples.setdefault(sample.metric, []).append(sample)

    def finish(self) -> None:
        self._finished = self._clock()

    def elapsed(self) -> float:
        end = self._finished if self._finished is not None else self._clock()
        return end - self._started

    def kind(self, metric: str) -> MetricKind:
        return self._kinds.get(metric) or BUILTIN_KINDS.get(metric, MetricKind.TREND)

    def metrics(self) -> list[str]:
        with self._lock:
            return sorted(self._samples)

    def values(self, metric: str, tags: Mapping[str, str] | None = None) -> list[float]:
        with self._lock:
            samples = list(self._samples.get(metric, ()))
        if tags:
            samples = [s for s in samples if all(s.tags.get(k) == v for k, v in tags.items())]
        return [s.value for s in samples]

    def aggregate(self, metric: str, aggregator: str, tags: Mapping[str, str] | None = None) -> float:
        kind = self.kind(metric)
        check_aggregator(kind, aggregator)
        values = self.values(metric, tags)
        if aggregator.startswith("p("):
            return percentile(values, float(aggregator[2:-1]))
        match aggregator:
            case "count":
                return float(len(values))
            case "avg":
                return statistics.fmean(values) if values else 0.0
            case "min":
                return min(values, default=0.0)
            case "max":
                return max(values, default=0.0)
            case "med":
                return statistics.median(values) if values else 0.0
            case "value":
                return values[-1] if values else 0.0
            case "rate" if kind is MetricKind.RATE:
                return sum(1 for v in values if v) / len(values) if values else 0.0
            case "rate" if kind is MetricKind.COUNTER:
                elapsed = self.elapsed()
                return sum(values) / elapsed if elapsed > 0 else 0.0
        raise ValueError(f"aggregator {aggregator!r} is not defined for {kind} metric {metric!r}")

    def summary(self) -> dict[str, dict[str, float]]:
        stats_by_kind = {
            MetricKind.TREND: TREND_STATS,
            MetricKind.RATE: ("rate", "count"),
            MetricKind.COUNTER: ("count", "rate"),
            MetricKind.GAUGE: ("value", "min", "max"),
        }
        return {
            metric: {stat: self.aggregate(metric, stat) for stat in stats_by_kind[self.kind(metric)]}
            for metric in self.metrics()
        }
