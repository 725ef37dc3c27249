import math
import random
import threading
import time
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Protocol

from botload.errors import ConfigurationError, UnknownMetricError

DEFAULT_RESERVOIR_SIZE = 10_000


class MetricKind(StrEnum):
    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"
    GAUGE = "gauge"


@dataclass(frozen=True)
class Sample:
    metric: str
    value: float
    tags: dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class SampleSink(Protocol):
    def emit(self, sample: Sample) -> None: ...


def submetric_name(metric: str, **tags: str) -> str:
    inner = ",".join(f"{key}:{value}" for key, value in tags.items())
    return f"{metric}{{{inner}}}"


def base_metric_name(name: str) -> str:
    return name.split("{", 1)[0]


def percentile(sorted_values: tuple[float, ...], pct: float) -> float:
    if not sorted_values:
        return 0.0
    k = (len(sorted_values) - 1) * (pct / 100.0)
    lower = math.floor(k)
    upper = math.ceil(k)
    if lower == upper:
        return sorted_values[int(k)]
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * (k - lower)


@dataclass(frozen=True)
class CounterSnapshot:
    name: str
    count: int
    total: float
    kind: MetricKind = MetricKind.COUNTER

    def rate_per_second(self, elapsed: float) -> float:
        return self.total / elapsed if elapsed > 0 else 0.0

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "count": self.total}


@dataclass(frozen=True)
class RateSnapshot:
    name: str
    passes: int
    total: int
    kind: MetricKind = MetricKind.RATE

    @property
    def count(self) -> int:
        return self.total

    @property
    def fails(self) -> int:
        return self.total - self.passes

    @property
    def rate(self) -> float:
        return self.passes / self.total if self.total else 0.0

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "rate": self.rate, "passes": self.passes, "fails": self.fails}


@dataclass(frozen=True)
class TrendSnapshot:
    name: str
    count: int
    min: float
    max: float
    avg: float
    reservoir: tuple[float, ...]
    kind: MetricKind = MetricKind.TREND

    def percentile(self, pct: float) -> float:
        return percentile(self.reservoir, pct)

    @property
    def med(self) -> float:
        return self.percentile(50)

    def to_dict(self) -> dict:
        return {
            "type": self.kind.value,
            "count": self.count,
            "avg": self.avg,
            "min": self.min,
            "med": self.med,
            "max": self.max,
            "p(90)": self.percentile(90),
            "p(95)": self.percentile(95),
            "p(99)": self.percentile(99),
        }


@dataclass(frozen=True)
class GaugeSnapshot:
    name: str
    count: int
    value: float
    min: float
    max: float
    kind: MetricKind = MetricKind.GAUGE

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "value": self.value, "min": self.min, "max": self.max}


MetricSnapshot = CounterSnapshot | RateSnapshot | TrendSnapshot | GaugeSnapshot


class CounterAggregate:
    kind = MetricKind.COUNTER

    def __init__(self, name: str) -> None:
        self.name = name
        self.count = 0
        self.total = 0.0

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value

    def snapshot(self) -> CounterSnapshot:
        return CounterSnapshot(self.name, self.count, self.total)


class RateAggregate:
    kind = MetricKind.RATE

    def __init__(self, name: str) -> None:
        self.name = name
        self.passes = 0
        self.total = 0

    def add(self, value: float) -> None:
        self.total += 1
        if value:
            self.passes += 1

    def snapshot(self) -> RateSnapshot:
        return RateSnapshot(self.name, self.passes, self.total)


class TrendAggregate:
    """Streaming distribution stats.

    Mean is kept with Welford's update; quantiles come from a fixed-size
    reservoir (Algorithm R), so memory stays bounded on long runs.
    """

    kind = MetricKind.TREND

    def __init__(self, name: str, reservoir_size: int = DEFAULT_RESERVOIR_SIZE, seed: int | None = None) -> None:
        self.name = name
        self.count = 0
        self.min = math.inf
        self.max = -math.inf
        self.mean = 0.0
        self._reservoir_size = reservoir_size
        self._reservoir: list[float] = []
        self._random = random.Random(seed)

    def add(self, value: float) -> None:
        self.count += 1
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self.mean += (value - self.mean) / self.count
        if len(self._reservoir) < self._reservoir_size:
            self._reservoir.append(value)
        else:
            slot = self._random.randrange(self.count)
            if slot < self._reservoir_size:
                self._reservoir[slot] = value

    def snapshot(self, sort: bool = True) -> TrendSnapshot:
        if not self.count:
            return TrendSnapshot(self.name, 0, 0.0, 0.0, 0.0, ())
        reservoir = tuple(sorted(self._reservoir)) if sort else tuple(self._reservoir)
        return TrendSnapshot(self.name, self.count, self.min, self.max, self.mean, reservoir)


class GaugeAggregate:
    kind = MetricKind.GAUGE

    def __init__(self, name: str) -> None:
        self.name = name
        self.count = 0
        self.value = 0.0
        self.min = math.inf
        self.max = -math.inf

    def add(self, value: float) -> None:
        self.count += 1
        self.value = value
        self.min = min(self.min, value)
        self.max = max(self.max, value)

    def snapshot(self) -> GaugeSnapshot:
        if not self.count:
            return GaugeSnapshot(self.name, 0, 0.0, 0.0, 0.0)
        return GaugeSnapshot(self.name, self.count, self.value, self.min, self.max)


_AGGREGATES = {
    MetricKind.COUNTER: CounterAggregate,
    MetricKind.RATE: RateAggregate,
    MetricKind.TREND: TrendAggregate,
    MetricKind.GAUGE: GaugeAggregate,
}

BUILTIN_METRICS: dict[str, MetricKind] = {
    "vus": MetricKind.GAUGE,
    "vus_max": MetricKind.GAUGE,
    "iterations": MetricKind.COUNTER,
    "iteration_duration": MetricKind.TREND,
    "iteration_failed": MetricKind.RATE,
    "iterations_interrupted": MetricKind.COUNTER,
    "http_reqs": MetricKind.COUNTER,
    "http_req_duration": MetricKind.TREND,
    "http_req_failed": MetricKind.RATE,
    "checks": MetricKind.RATE,
}


@dataclass(frozen=True)
class MetricsSnapshot:
    metrics: dict[str, MetricSnapshot]
    taken_at: float = field(default_factory=time.time)

    def get(self, name: str) -> MetricSnapshot | None:
        return self.metrics.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.metrics

    def to_dict(self) -> dict[str, dict]:
        return {name: metric.to_dict() for name, metric in sorted(self.metrics.items())}


class MetricHandle:
    def __init__(self, aggregator: "MetricsAggregator", name: str, tags: dict[str, str] | None = None) -> None:
        self._aggregator = aggregator
        self.name = name
        self._tags = tags or {}

    def add(self, value: float | bool, tags: dict[str, str] | None = None) -> None:
        merged = {**self._tags, **tags} if tags else self._tags
        self._aggregator.record(Sample(self.name, float(value), merged))


class MetricsAggregator:
    def __init__(
        self,
        sink: SampleSink | None = None,
        reservoir_size: int = DEFAULT_RESERVOIR_SIZE,
    ) -> None:
        self._lock = threading.Lock()
        self._kinds: dict[str, MetricKind] = {}
        self._aggregates: dict[str, CounterAggregate | RateAggregate | TrendAggregate | GaugeAggregate] = {}
        self._sink = sink
        self._reservoir_size = reservoir_size
        for name, kind in BUILTIN_METRICS.items():
            self.declare(name, kind)

    def declare(self, name: str, kind: MetricKind) -> None:
        with self._lock:
            existing = self._kinds.get(name)
            if existing is not None and existing != kind:
                raise ConfigurationError(f"metric {name!r} already declared as {existing}, not {kind}")
            self._kinds[name] = kind

    def kind_of(self, name: str) -> MetricKind | None:
        return self._kinds.get(name)

    def kinds(self) -> dict[str, MetricKind]:
        with self._lock:
            return dict(self._kinds)

    def record(self, sample: Sample) -> None:
        with self._lock:
            aggregate = self._aggregates.get(sample.metric)
            if aggregate is None:
                kind = self._kinds.get(sample.metric)
                if kind is None:
                    raise UnknownMetricError(sample.metric)
                if kind is MetricKind.TREND:
                    aggregate = TrendAggregate(sample.metric, self._reservoir_size)
                else:
                    aggregate = _AGGREGATES[kind](sample.metric)
                self._aggregates[sample.metric] = aggregate
            aggregate.add(sample.value)
        if self._sink is not None:
            self._sink.emit(sample)

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            metrics = {
                name: aggregate.snapshot(sort=False) if isinstance(aggregate, TrendAggregate) else aggregate.snapshot()
                for name, aggregate in self._aggregates.items()
            }
        # sorting happens after the lock is released
        for name, metric in metrics.items():
            if isinstance(metric, TrendSnapshot):
                metrics[name] = replace(metric, reservoir=tuple(sorted(metric.reservoir)))
        return MetricsSnapshot(metrics)

    def _handle(self, name: str, kind: MetricKind, tags: dict[str, str] | None) -> MetricHandle:
        if self._kinds.get(name) != kind:
            self.declare(name, kind)
        return MetricHandle(self, name, tags)

    def counter(self, name: str, tags: dict[str, str] | None = None) -> MetricHandle:
        return self._handle(name, MetricKind.COUNTER, tags)

    def rate(self, name: str, tags: dict[str, str] | None = None) -> MetricHandle:
        return self._handle(name, MetricKind.RATE, tags)

    def trend(self, name: str, tags: dict[str, str] | None = None) -> MetricHandle:
        return self._handle(name, MetricKind.TREND, tags)

    def gauge(self, name: str, tags: dict[str, str] | None = None) -> MetricHandle:
        return self._handle(name, MetricKind.GAUGE, tags)
