"""Piecewise-linear concurrency targets over the run timeline."""

from __future__ import annotations

import math
from typing import Iterable

from loadgen.core.models import Stage
from loadgen.exceptions import ConfigurationError

_EPSILON = 1e-9


class StageSchedule:
    """Ordered stage list with precomputed boundaries.

    Each stage ramps linearly from the previous stage's target (0 before the
    first stage) to its own target over its duration.  Once the last stage
    has elapsed the run is terminal and the target is 0.
    """

    def __init__(self, stages: Iterable[Stage], *, max_vus: int | None = None) -> None:
        self._stages = tuple(stages)
        validate_stages(self._stages, max_vus=max_vus)

        # (start, end, from_target, to_target) per stage
        self._segments: list[tuple[float, float, int, int]] = []
        start = 0.0
        previous = 0
        for stage in self._stages:
            end = start + stage.duration_seconds
            self._segments.append((start, end, previous, stage.target))
            start = end
            previous = stage.target
        self._total = start

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def total_duration_seconds(self) -> float:
        return self._total

    @property
    def peak_target(self) -> int:
        return max(stage.target for stage in self._stages)

    def is_terminal(self, elapsed: float) -> bool:
        return elapsed >= self._total

    def target_at(self, elapsed: float) -> int:
        """Target concurrency at ``elapsed`` seconds since run start."""
        if elapsed < 0:
            elapsed = 0.0
        if self.is_terminal(elapsed):
            return 0

        for start, end, from_target, to_target in self._segments:
            if elapsed >= end:
                continue
            span = end - start
            # zero-length stages are skipped by the `elapsed >= end` check
            fraction = (elapsed - start) / span
            value = from_target + (to_target - from_target) * fraction
            return int(math.floor(value + _EPSILON))

        return 0


def validate_stages(stages: tuple[Stage, ...] | list[Stage], *, max_vus: int | None = None) -> None:
    """Reject stage lists the scheduler could never honor."""
    if not stages:
        raise ConfigurationError("INVALID_STAGES", "at least one stage is required")

    for index, stage in enumerate(stages):
        if isinstance(stage.target, bool) or not isinstance(stage.target, int):
            raise ConfigurationError(
                "INVALID_STAGE_TARGET",
                "stage target must be an integer",
                {"stage": index, "target": stage.target},
            )
        if stage.target < 0:
            raise ConfigurationError(
                "INVALID_STAGE_TARGET",
                "stage target must be >= 0",
                {"stage": index, "target": stage.target},
            )
        if stage.duration_seconds < 0 or math.isnan(stage.duration_seconds) or math.isinf(stage.duration_seconds):
            raise ConfigurationError(
                "INVALID_STAGE_DURATION",
                "stage duration must be a finite value >= 0",
                {"stage": index, "duration_seconds": stage.duration_seconds},
            )
        if max_vus is not None and stage.target > max_vus:
            raise ConfigurationError(
                "UNREACHABLE_STAGE_TARGET",
                "stage target exceeds max_vus",
                {"stage": index, "target": stage.target, "max_vus": max_vus},
            )

    if sum(s.duration_seconds for s in stages) <= 0:
        raise ConfigurationError("INVALID_STAGES", "total stage duration must be > 0")
