"""Staged load generation engine.

Virtual users ramp up and down along a stage timeline, each repeatedly
running a weighted-random scenario; metrics aggregate concurrently and are
checked against thresholds at the end of the run.
"""

from __future__ import annotations

from loadgen.core.checks import check
from loadgen.core.context import current
from loadgen.core.engine import Runner
from loadgen.core.metrics import Counter, Rate, Trend
from loadgen.core.models import RunConfig, RunResult, ScenarioWeight, Stage, ThinkTime

__all__ = [
    "Counter",
    "Rate",
    "RunConfig",
    "RunResult",
    "Runner",
    "ScenarioWeight",
    "Stage",
    "ThinkTime",
    "Trend",
    "check",
    "current",
]
