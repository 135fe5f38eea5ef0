"""Pass/fail criteria over aggregate metric statistics.

Expressions follow the k6 shape: ``p(95)<1000``, ``rate<0.1``, ``avg<=200``,
``count>0``.  Comparisons are exact; a statistic equal to the limit fails a
strict comparator and passes a non-strict one.
"""

from __future__ import annotations

import operator
import re
from typing import Any, Callable, Iterable, Mapping

from loadgen.core.metrics import (
    BUILTIN_METRICS,
    CounterSummary,
    MetricSummary,
    RateSummary,
    TrendSummary,
    base_name,
)
from loadgen.core.models import Comparator, MetricKind, Threshold, ThresholdOutcome
from loadgen.exceptions import ConfigurationError, ValidationError

_EXPRESSION_RE = re.compile(
    r"^\s*(?P<stat>avg|min|max|med|count|rate|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)"
    r"\s*(?P<limit>[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)\s*$"
)

_OPERATORS: dict[Comparator, Callable[[float, float], bool]] = {
    Comparator.LT: operator.lt,
    Comparator.LE: operator.le,
    Comparator.GT: operator.gt,
    Comparator.GE: operator.ge,
    Comparator.EQ: operator.eq,
    Comparator.NE: operator.ne,
}

_ALLOWED_STATISTICS: dict[MetricKind, frozenset[str]] = {
    MetricKind.TREND: frozenset({"avg", "min", "max", "med", "count", "p"}),
    MetricKind.RATE: frozenset({"rate", "count"}),
    MetricKind.COUNTER: frozenset({"count", "rate"}),
}


def parse_threshold(metric: str, expression: str, *, abort_on_fail: bool = False) -> Threshold:
    match = _EXPRESSION_RE.match(expression)
    if not match:
        raise ValidationError(
            "INVALID_THRESHOLD",
            "threshold must look like '<stat><op><number>', e.g. 'p(95)<1000' or 'rate<0.1'",
            {"metric": metric, "expression": expression},
        )

    stat = match.group("stat")
    percentile = None
    if stat.startswith("p("):
        percentile = float(match.group("pct"))
        if percentile > 100:
            raise ValidationError(
                "INVALID_THRESHOLD",
                "percentile must be in [0, 100]",
                {"metric": metric, "expression": expression},
            )
        stat = "p"

    return Threshold(
        metric=metric,
        statistic=stat,
        comparator=Comparator(match.group("op")),
        limit=float(match.group("limit")),
        percentile=percentile,
        abort_on_fail=abort_on_fail,
        source=expression.strip(),
    )


def parse_thresholds(raw: Mapping[str, Any]) -> list[Threshold]:
    """Parse the k6-style mapping ``{metric: [expr | {threshold, abortOnFail}]}``."""
    if not isinstance(raw, Mapping):
        raise ConfigurationError("INVALID_THRESHOLDS", "thresholds must be an object keyed by metric name")

    thresholds: list[Threshold] = []
    for metric, entries in raw.items():
        if isinstance(entries, (str, dict)):
            entries = [entries]
        if not isinstance(entries, list):
            raise ConfigurationError(
                "INVALID_THRESHOLDS",
                f"thresholds for {metric!r} must be a list",
                {"metric": metric},
            )
        for entry in entries:
            if isinstance(entry, str):
                thresholds.append(parse_threshold(metric, entry))
            elif isinstance(entry, dict) and isinstance(entry.get("threshold"), str):
                thresholds.append(
                    parse_threshold(
                        metric,
                        entry["threshold"],
                        abort_on_fail=bool(entry.get("abortOnFail", entry.get("abort_on_fail", False))),
                    )
                )
            else:
                raise ConfigurationError(
                    "INVALID_THRESHOLDS",
                    f"threshold entry for {metric!r} must be a string or an object with 'threshold'",
                    {"metric": metric, "entry": entry},
                )
    return thresholds


def check_statistic_applies(threshold: Threshold, kind: MetricKind) -> None:
    if threshold.statistic not in _ALLOWED_STATISTICS[kind]:
        raise ConfigurationError(
            "INVALID_THRESHOLD_STATISTIC",
            f"statistic {threshold.source or threshold.statistic!r} does not apply to {kind.value} metric {threshold.metric!r}",
            {"metric": threshold.metric, "kind": kind.value},
        )


def validate_thresholds(
    thresholds: Iterable[Threshold],
    known_kinds: Mapping[str, MetricKind] = BUILTIN_METRICS,
) -> None:
    """Reject statistics that can never apply; custom metric kinds are only known at run time."""
    for threshold in thresholds:
        kind = known_kinds.get(base_name(threshold.metric))
        if kind is not None:
            check_statistic_applies(threshold, kind)


def compute_statistic(
    threshold: Threshold,
    summary: MetricSummary,
    *,
    duration_seconds: float | None = None,
) -> float | None:
    check_statistic_applies(threshold, summary.kind)
    stat = threshold.statistic

    if isinstance(summary, TrendSummary):
        if summary.count == 0:
            return None
        if stat == "count":
            return float(summary.count)
        if stat == "p":
            assert threshold.percentile is not None
            return summary.percentile(threshold.percentile)
        return getattr(summary, stat)

    if isinstance(summary, RateSummary):
        if stat == "count":
            return float(summary.total)
        return summary.rate

    if isinstance(summary, CounterSummary):
        if stat == "count":
            return summary.total
        return summary.per_second(duration_seconds)

    return None


def evaluate_threshold(
    threshold: Threshold,
    snapshot: Mapping[str, MetricSummary],
    *,
    duration_seconds: float | None = None,
) -> ThresholdOutcome:
    summary = snapshot.get(threshold.metric)
    if summary is None:
        return ThresholdOutcome(threshold=threshold, observed=None, passed=False)

    if threshold.statistic not in _ALLOWED_STATISTICS[summary.kind]:
        return ThresholdOutcome(threshold=threshold, observed=None, passed=False)

    observed = compute_statistic(threshold, summary, duration_seconds=duration_seconds)
    if observed is None:
        return ThresholdOutcome(threshold=threshold, observed=None, passed=False)

    passed = _OPERATORS[threshold.comparator](observed, threshold.limit)
    return ThresholdOutcome(threshold=threshold, observed=observed, passed=bool(passed))


def evaluate_thresholds(
    thresholds: Iterable[Threshold],
    snapshot: Mapping[str, MetricSummary],
    *,
    duration_seconds: float | None = None,
) -> tuple[list[ThresholdOutcome], bool]:
    """Evaluate every threshold; the verdict is the AND of all outcomes."""
    outcomes = [evaluate_threshold(t, snapshot, duration_seconds=duration_seconds) for t in thresholds]
    return outcomes, all(o.passed for o in outcomes)
