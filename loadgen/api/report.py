from __future__ import annotations

from typing import Any

from loadgen.core.models import RunConfig, RunResult, ThresholdOutcome
from loadgen.core.timeparse import format_seconds


def build_run_report(config: RunConfig, result: RunResult) -> dict[str, Any]:
    config_payload = {
        "base_url": config.base_url,
        "stages": [{"duration_seconds": s.duration_seconds, "target": s.target} for s in config.stages],
        "scenarios": [{"name": s.name, "weight": s.probability} for s in config.scenarios],
        "think_time": {
            "min_seconds": config.think_time.min_seconds,
            "jitter_seconds": config.think_time.jitter_seconds,
        },
        "timeout_seconds": config.timeout_seconds,
        "max_vus": config.max_vus,
        "sample_size": config.sample_size,
        "seed": config.seed,
    }
    return {
        "config": config_payload,
        "result": {
            "passed": result.passed,
            "duration_seconds": result.duration_seconds,
            "iterations": result.iterations,
            "request_count": result.request_count,
            "throughput_rps": result.throughput_rps,
            "peak_vus": result.peak_vus,
            "aborted_by_threshold": result.aborted_by_threshold,
            "interrupted": result.interrupted,
        },
        "thresholds": [_outcome_payload(o) for o in result.outcomes],
        "metrics": result.metrics,
    }


def _outcome_payload(outcome: ThresholdOutcome) -> dict[str, Any]:
    return {
        "metric": outcome.threshold.metric,
        "threshold": outcome.threshold.source,
        "observed": outcome.observed,
        "passed": outcome.passed,
    }


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def render_summary(result: RunResult) -> list[str]:
    """Human-readable end-of-run table, one line per metric and threshold."""
    lines = [
        f"{'metric':<48} {'count':>8} {'avg':>10} {'p(90)':>10} {'p(95)':>10} {'p(99)':>10} {'rate':>8}",
        "-" * 110,
    ]
    for name, stats in result.metrics.items():
        lines.append(
            f"{name:<48} {_fmt(stats.get('count')):>8} {_fmt(stats.get('avg')):>10} "
            f"{_fmt(stats.get('p(90)')):>10} {_fmt(stats.get('p(95)')):>10} {_fmt(stats.get('p(99)')):>10} "
            f"{_fmt(stats.get('rate')):>8}"
        )

    if result.outcomes:
        lines.append("")
        for outcome in result.outcomes:
            mark = "PASS" if outcome.passed else "FAIL"
            lines.append(f"[{mark}] {outcome.threshold.label} (observed {_fmt(outcome.observed)})")

    lines.append("")
    lines.append(
        f"verdict: {'PASS' if result.passed else 'FAIL'}  duration={format_seconds(result.duration_seconds)} "
        f"iterations={result.iterations} requests={result.request_count} peak_vus={result.peak_vus}"
    )
    return lines
