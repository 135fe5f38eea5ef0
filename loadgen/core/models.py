from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Union

ScenarioHandler = Callable[[], Union[Awaitable[Any], Any]]
SetupHook = Callable[[], Union[Awaitable[Any], Any]]
TeardownHook = Callable[[Any], Union[Awaitable[Any], Any]]


class MetricKind(str, Enum):
    """Kind of a named metric.

    counter: monotonic sum of increments
    rate: tally of true/false observations
    trend: distribution of durations (ms) supporting percentiles
    """

    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


class Comparator(str, Enum):
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "=="
    NE = "!="


@dataclass(frozen=True)
class Stage:
    """One ramp or hold segment of the concurrency timeline."""

    duration_seconds: float
    target: int


@dataclass(frozen=True)
class ScenarioWeight:
    name: str
    probability: float
    handler: ScenarioHandler


@dataclass(frozen=True)
class ThinkTime:
    """Uniform pause between ``min_seconds`` and ``min_seconds + jitter_seconds``."""

    min_seconds: float = 0.5
    jitter_seconds: float = 2.0


@dataclass(frozen=True)
class Threshold:
    """Pass/fail criterion over one statistic of one metric.

    ``percentile`` is set only when ``statistic`` is ``"p"``.
    """

    metric: str
    statistic: str
    comparator: Comparator
    limit: float
    percentile: float | None = None
    abort_on_fail: bool = False
    source: str = ""

    @property
    def label(self) -> str:
        return f"{self.metric}: {self.source}" if self.source else self.metric


@dataclass(frozen=True)
class ThresholdOutcome:
    threshold: Threshold
    observed: float | None
    passed: bool


@dataclass(frozen=True)
class RunConfig:
    stages: list[Stage]
    scenarios: list[ScenarioWeight]
    thresholds: list[Threshold] = field(default_factory=list)
    think_time: ThinkTime = field(default_factory=ThinkTime)
    base_url: str | None = None
    api_key: str | None = None
    setup: SetupHook | None = None
    teardown: TeardownHook | None = None
    timeout_seconds: float = 30.0
    max_retries: int = 0
    tick_seconds: float = 1.0
    graceful_stop_seconds: float = 30.0
    max_vus: int | None = None
    sample_size: int | None = None
    seed: int | None = None

    @property
    def total_duration_seconds(self) -> float:
        return sum(s.duration_seconds for s in self.stages)


@dataclass
class RunResult:
    started_at_monotonic: float
    ended_at_monotonic: float
    metrics: dict[str, dict[str, Any]]
    outcomes: list[ThresholdOutcome]
    peak_vus: int = 0
    aborted_by_threshold: bool = False
    interrupted: bool = False

    @property
    def passed(self) -> bool:
        return all(o.passed for o in self.outcomes)

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.ended_at_monotonic - self.started_at_monotonic)

    @property
    def iterations(self) -> int:
        return int(self.metrics.get("iterations", {}).get("count", 0))

    @property
    def request_count(self) -> int:
        return int(self.metrics.get("http_reqs", {}).get("count", 0))

    @property
    def throughput_rps(self) -> float:
        duration = self.duration_seconds
        return (self.request_count / duration) if duration > 0 else 0.0
