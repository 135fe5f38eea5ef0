from __future__ import annotations

import math
import random
from bisect import bisect_left
from dataclasses import dataclass
from typing import Iterable

from loadgen.core.models import ScenarioWeight
from loadgen.exceptions import ConfigurationError

# Float slack allowed when checking that weights sum to <= 1.0.
_SUM_TOLERANCE = 1e-9


@dataclass(frozen=True)
class _Entry:
    boundary: float
    scenario: ScenarioWeight


class ScenarioDispatcher:
    """Weighted random selection among mutually exclusive scenarios.

    The cumulative table is built once from the normalized weights and never
    mutated, so a single dispatcher is shared by every virtual user.  Each
    caller passes its own ``random.Random``.

    Weights summing to less than 1.0 are normalized; every call selects
    exactly one scenario.
    """

    def __init__(self, scenarios: Iterable[ScenarioWeight]) -> None:
        scenarios = list(scenarios)
        validate_scenarios(scenarios)

        total = sum(s.probability for s in scenarios)
        boundaries: list[float] = []
        running = 0.0
        for scenario in scenarios:
            running += scenario.probability / total
            boundaries.append(running)
        # Pin the last boundary so a draw close to 1.0 never falls off the table.
        boundaries[-1] = 1.0

        self._entries = tuple(_Entry(b, s) for b, s in zip(boundaries, scenarios))
        self._boundaries = tuple(boundaries)

    @property
    def scenarios(self) -> list[ScenarioWeight]:
        return [e.scenario for e in self._entries]

    def probabilities(self) -> dict[str, float]:
        """Effective (normalized) probability per scenario name."""
        result: dict[str, float] = {}
        previous = 0.0
        for entry in self._entries:
            result[entry.scenario.name] = result.get(entry.scenario.name, 0.0) + entry.boundary - previous
            previous = entry.boundary
        return result

    def select(self, draw: float) -> ScenarioWeight:
        """Map a draw in [0, 1) onto the first boundary >= draw."""
        index = bisect_left(self._boundaries, draw)
        if index >= len(self._entries):
            index = len(self._entries) - 1
        return self._entries[index].scenario

    def choose(self, rng: random.Random | None = None) -> ScenarioWeight:
        draw = (rng or random).random()
        return self.select(draw)


def validate_scenarios(scenarios: list[ScenarioWeight]) -> None:
    if not scenarios:
        raise ConfigurationError("INVALID_SCENARIOS", "at least one scenario is required")

    for scenario in scenarios:
        p = scenario.probability
        if isinstance(p, bool) or not isinstance(p, (int, float)) or math.isnan(p) or p <= 0 or p > 1:
            raise ConfigurationError(
                "INVALID_SCENARIO_WEIGHT",
                f"scenario {scenario.name!r} weight must be in (0, 1]",
                {"scenario": scenario.name, "weight": p},
            )
        if not callable(scenario.handler):
            raise ConfigurationError(
                "INVALID_SCENARIO_HANDLER",
                f"scenario {scenario.name!r} handler is not callable",
                {"scenario": scenario.name},
            )

    total = sum(s.probability for s in scenarios)
    if total > 1.0 + _SUM_TOLERANCE:
        raise ConfigurationError(
            "INVALID_SCENARIO_WEIGHTS",
            "scenario weights must sum to <= 1.0",
            {"sum": total},
        )
