from __future__ import annotations

import math
import random
import threading
from dataclasses import dataclass
from typing import Any, ClassVar, Iterable, Mapping, Union

from loadgen.core.context import current
from loadgen.core.models import MetricKind
from loadgen.exceptions import ValidationError
from loadgen.logger import Logger, session_logger


# Metrics recorded by the engine itself; their kinds are known before the run.
BUILTIN_METRICS: dict[str, MetricKind] = {
    "iterations": MetricKind.COUNTER,
    "iteration_duration": MetricKind.TREND,
    "iteration_failed": MetricKind.RATE,
    "http_reqs": MetricKind.COUNTER,
    "http_req_duration": MetricKind.TREND,
    "http_req_failed": MetricKind.RATE,
    "checks": MetricKind.RATE,
}


def base_name(name: str) -> str:
    """Strip a tag suffix: ``http_req_duration{scenario:x}`` -> ``http_req_duration``."""
    return name.split("{", 1)[0]


def _percentile(sorted_values: list[float] | tuple[float, ...], p: float) -> float | None:
    """Compute percentile using linear interpolation.

    Expects sorted_values sorted ascending and ``p`` as a fraction in [0, 1].
    """

    if not sorted_values:
        return None

    if p <= 0:
        return float(sorted_values[0])
    if p >= 1:
        return float(sorted_values[-1])

    k = (len(sorted_values) - 1) * p
    f = int(math.floor(k))
    c = int(math.ceil(k))
    if f == c:
        return float(sorted_values[f])
    d0 = sorted_values[f] * (c - k)
    d1 = sorted_values[c] * (k - f)
    return float(d0 + d1)


def tagged_name(name: str, tags: Mapping[str, Any] | None) -> str:
    """Sub-metric name, e.g. ``http_req_duration{expected_response:true}``."""
    if not tags:
        return name
    rendered = ",".join(f"{k}:{str(v).lower() if isinstance(v, bool) else v}" for k, v in tags.items())
    return f"{name}{{{rendered}}}"


class _ReservoirSampler:
    """Sample buffer for trend values.

    Unbounded when ``max_size`` is None (exact percentiles); otherwise a
    fixed-size reservoir that avoids unbounded memory growth during long runs.
    """

    def __init__(self, max_size: int | None, *, seed: int | None = None) -> None:
        if max_size is not None and max_size <= 0:
            raise ValueError("max_size must be > 0")
        self._max_size = max_size
        self._rng = random.Random(seed)
        self._seen = 0
        self._values: list[float] = []

    def add(self, value: float) -> None:
        self._seen += 1
        if self._max_size is None or len(self._values) < self._max_size:
            self._values.append(value)
            return

        # Replace elements with decreasing probability.
        idx = self._rng.randrange(self._seen)
        if idx < self._max_size:
            self._values[idx] = value

    def values(self) -> list[float]:
        return list(self._values)


@dataclass
class _CounterAgg:
    total: float = 0.0
    samples: int = 0


@dataclass
class _RateAgg:
    trues: int = 0
    total: int = 0


@dataclass
class _TrendAgg:
    sample: _ReservoirSampler
    count: int = 0
    total: float = 0.0
    min: float | None = None
    max: float | None = None


@dataclass(frozen=True)
class CounterSummary:
    kind: ClassVar[MetricKind] = MetricKind.COUNTER

    total: float
    samples: int

    def per_second(self, duration_seconds: float | None) -> float | None:
        if not duration_seconds or duration_seconds <= 0:
            return None
        return self.total / duration_seconds

    def to_report(self, duration_seconds: float | None = None) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "count": self.total,
            "rate": self.per_second(duration_seconds),
        }


@dataclass(frozen=True)
class RateSummary:
    kind: ClassVar[MetricKind] = MetricKind.RATE

    trues: int
    total: int

    @property
    def rate(self) -> float | None:
        return (self.trues / self.total) if self.total else None

    def to_report(self, duration_seconds: float | None = None) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "rate": self.rate,
            "passes": self.trues,
            "fails": self.total - self.trues,
            "count": self.total,
        }


@dataclass(frozen=True)
class TrendSummary:
    kind: ClassVar[MetricKind] = MetricKind.TREND
    REPORT_PERCENTILES: ClassVar[tuple[int, ...]] = (50, 90, 95, 99)

    count: int
    total: float
    min: float | None
    max: float | None
    values: tuple[float, ...]

    @property
    def avg(self) -> float | None:
        return (self.total / self.count) if self.count else None

    @property
    def med(self) -> float | None:
        return self.percentile(50)

    @property
    def exact(self) -> bool:
        return len(self.values) == self.count

    def percentile(self, q: float) -> float | None:
        """Percentile for ``q`` in [0, 100]."""
        return _percentile(self.values, q / 100.0)

    def to_report(self, duration_seconds: float | None = None) -> dict[str, Any]:
        report: dict[str, Any] = {
            "kind": self.kind.value,
            "count": self.count,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "med": self.med,
        }
        for q in self.REPORT_PERCENTILES:
            report[f"p({q})"] = self.percentile(q)
        report["sample_size"] = len(self.values)
        return report


MetricSummary = Union[CounterSummary, RateSummary, TrendSummary]


class MetricsCollector:
    """Thread-safe named counters, rates and trends for one run.

    Aggregates are created on first observation.  Every write holds the lock
    for O(1) work; sorting for percentiles happens at query time on copies.
    After ``freeze`` writes are dropped so threshold evaluation reads stable
    values.
    """

    def __init__(
        self,
        *,
        sample_size: int | None = None,
        seed: int | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._logger = logger or session_logger
        self._lock = threading.Lock()
        self._sample_size = sample_size
        self._seed = seed
        self._frozen = False

        self._kinds: dict[str, MetricKind] = {}
        self._counters: dict[str, _CounterAgg] = {}
        self._rates: dict[str, _RateAgg] = {}
        self._trends: dict[str, _TrendAgg] = {}

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    def add_counter(self, name: str, amount: float = 1, *, tags: Mapping[str, Any] | None = None) -> None:
        if amount < 0:
            raise ValidationError(
                "INVALID_COUNTER_INCREMENT",
                "counter increments must be >= 0",
                {"metric": name, "amount": amount},
            )
        keys = _keys(name, tags)
        with self._lock:
            if self._rejects_write(keys, MetricKind.COUNTER):
                return
            for key in keys:
                agg = self._counters.get(key)
                if agg is None:
                    agg = self._counters[key] = _CounterAgg()
                agg.total += amount
                agg.samples += 1

    def add_rate(self, name: str, value: bool, *, tags: Mapping[str, Any] | None = None) -> None:
        hit = bool(value)
        keys = _keys(name, tags)
        with self._lock:
            if self._rejects_write(keys, MetricKind.RATE):
                return
            for key in keys:
                agg = self._rates.get(key)
                if agg is None:
                    agg = self._rates[key] = _RateAgg()
                agg.total += 1
                if hit:
                    agg.trues += 1

    def add_trend(self, name: str, value: float, *, tags: Mapping[str, Any] | None = None) -> None:
        if value < 0:
            value = 0.0
        value = float(value)
        keys = _keys(name, tags)
        with self._lock:
            if self._rejects_write(keys, MetricKind.TREND):
                return
            for key in keys:
                agg = self._trends.get(key)
                if agg is None:
                    agg = self._trends[key] = _TrendAgg(sample=_ReservoirSampler(self._sample_size, seed=self._seed))
                agg.count += 1
                agg.total += value
                if agg.min is None or value < agg.min:
                    agg.min = value
                if agg.max is None or value > agg.max:
                    agg.max = value
                agg.sample.add(value)

    def kind_of(self, name: str) -> MetricKind | None:
        with self._lock:
            return self._kinds.get(name)

    def summary(self, name: str) -> MetricSummary | None:
        return self.summaries([name]).get(name)

    def snapshot(self) -> dict[str, MetricSummary]:
        """Copy every aggregate; stable once the collector is frozen."""
        return self._collect(None)

    def summaries(self, names: Iterable[str]) -> dict[str, MetricSummary]:
        """Copy only the named aggregates; names without data are left out.

        Used for mid-run checks, so unrelated trend samples are neither copied
        nor sorted.
        """
        return self._collect(set(names))

    def build_report(self, duration_seconds: float | None = None) -> dict[str, dict[str, Any]]:
        return {name: s.to_report(duration_seconds) for name, s in self.snapshot().items()}

    def _collect(self, names: set[str] | None) -> dict[str, MetricSummary]:
        def wanted(source: dict[str, Any]) -> list[str]:
            if names is None:
                return list(source)
            return [n for n in names if n in source]

        with self._lock:
            counters = {k: (self._counters[k].total, self._counters[k].samples) for k in wanted(self._counters)}
            rates = {k: (self._rates[k].trues, self._rates[k].total) for k in wanted(self._rates)}
            trends = {}
            for k in wanted(self._trends):
                a = self._trends[k]
                trends[k] = (a.count, a.total, a.min, a.max, a.sample.values())

        result: dict[str, MetricSummary] = {}
        for name, (total, samples) in counters.items():
            result[name] = CounterSummary(total=total, samples=samples)
        for name, (trues, total) in rates.items():
            result[name] = RateSummary(trues=trues, total=total)
        for name, (count, total, lo, hi, values) in trends.items():
            values.sort()
            result[name] = TrendSummary(count=count, total=total, min=lo, max=hi, values=tuple(values))
        return dict(sorted(result.items()))

    def _rejects_write(self, keys: tuple[str, ...], kind: MetricKind) -> bool:
        """Check the frozen flag and every key's kind before any aggregate changes.

        Caller holds the lock.
        """
        if self._frozen:
            self._logger.debug("metrics.write_after_freeze", event="metrics.write_after_freeze", metric=keys[0])
            return True
        for key in keys:
            existing = self._kinds.get(key)
            if existing is not None and existing is not kind:
                raise ValidationError(
                    "METRIC_KIND_MISMATCH",
                    f"metric {key!r} is a {existing.value}, not a {kind.value}",
                    {"metric": key, "existing": existing.value, "requested": kind.value},
                )
        for key in keys:
            self._kinds.setdefault(key, kind)
        return False


def _keys(name: str, tags: Mapping[str, Any] | None) -> tuple[str, ...]:
    if not tags:
        return (name,)
    return (name, tagged_name(name, tags))


class _MetricHandle:
    """Named metric bound lazily to the collector of the running virtual user."""

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError("metric name must be non-empty")
        self.name = name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class Counter(_MetricHandle):
    def add(self, amount: float = 1, tags: Mapping[str, Any] | None = None) -> None:
        current().metrics.add_counter(self.name, amount, tags=tags)


class Rate(_MetricHandle):
    def add(self, value: bool, tags: Mapping[str, Any] | None = None) -> None:
        current().metrics.add_rate(self.name, value, tags=tags)


class Trend(_MetricHandle):
    def add(self, value: float, tags: Mapping[str, Any] | None = None) -> None:
        current().metrics.add_trend(self.name, value, tags=tags)
