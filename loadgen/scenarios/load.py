"""Staged run profiles: smoke, load and stress.

The profiles mirror the ramps used for the search API benchmarks, so a run
config can pick one by name instead of spelling out every stage::

    from loadgen import Runner
    from loadgen.scenarios.load import build_run_config

    config = build_run_config("smoke", scenarios=[...], base_url="http://localhost:8080")
    result = await Runner(config).run()
"""

from __future__ import annotations

from typing import Iterable

from loadgen.core.models import RunConfig, ScenarioWeight, SetupHook, Stage, TeardownHook, Threshold, ThinkTime
from loadgen.core.thresholds import parse_thresholds
from loadgen.exceptions import ConfigurationError

PROFILES: dict[str, list[Stage]] = {
    "smoke": [
        Stage(duration_seconds=10, target=2),
        Stage(duration_seconds=30, target=2),
        Stage(duration_seconds=10, target=0),
    ],
    "load": [
        Stage(duration_seconds=120, target=4),
        Stage(duration_seconds=300, target=4),
        Stage(duration_seconds=120, target=16),
        Stage(duration_seconds=300, target=16),
        Stage(duration_seconds=120, target=64),
        Stage(duration_seconds=300, target=64),
        Stage(duration_seconds=180, target=0),
    ],
    "stress": [
        Stage(duration_seconds=15, target=2),
        Stage(duration_seconds=30, target=4),
        Stage(duration_seconds=60, target=4),
        Stage(duration_seconds=30, target=8),
        Stage(duration_seconds=120, target=8),
        Stage(duration_seconds=30, target=16),
        Stage(duration_seconds=120, target=16),
        Stage(duration_seconds=30, target=32),
        Stage(duration_seconds=60, target=32),
        Stage(duration_seconds=30, target=0),
    ],
}

PROFILE_THRESHOLDS: dict[str, dict[str, list[str]]] = {
    "smoke": {
        "http_req_duration": ["p(95)<500"],
        "http_req_failed": ["rate<0.05"],
    },
    "load": {
        "http_req_duration": ["p(95)<1000", "p(99)<2000"],
        "http_req_failed": ["rate<0.1"],
    },
    "stress": {
        "http_req_duration": ["p(95)<120"],
        "http_req_failed": ["rate<0.01"],
    },
}


def profile_stages(name: str) -> list[Stage]:
    try:
        return list(PROFILES[name])
    except KeyError:
        raise ConfigurationError(
            "UNKNOWN_PROFILE",
            f"unknown profile {name!r}",
            {"available": sorted(PROFILES)},
        ) from None


def build_run_config(
    profile: str,
    *,
    scenarios: Iterable[ScenarioWeight],
    base_url: str | None = None,
    api_key: str | None = None,
    thresholds: list[Threshold] | None = None,
    think_time: ThinkTime | None = None,
    setup: SetupHook | None = None,
    teardown: TeardownHook | None = None,
    timeout_seconds: float = 30.0,
    seed: int | None = None,
) -> RunConfig:
    """Build a ``RunConfig`` from a named profile.

    Profile thresholds apply unless ``thresholds`` is given (pass ``[]`` to
    run without any).
    """
    stages = profile_stages(profile)
    if thresholds is None:
        thresholds = parse_thresholds(PROFILE_THRESHOLDS[profile])
    return RunConfig(
        stages=stages,
        scenarios=list(scenarios),
        thresholds=thresholds,
        think_time=think_time or ThinkTime(),
        base_url=base_url,
        api_key=api_key,
        setup=setup,
        teardown=teardown,
        timeout_seconds=timeout_seconds,
        seed=seed,
    )

