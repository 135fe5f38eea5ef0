from __future__ import annotations

import importlib
import json
import math
import os
import sys
from pathlib import Path
from typing import Any, Callable, Mapping

from loadgen.core.mix import validate_scenarios
from loadgen.core.models import RunConfig, ScenarioWeight, Stage, ThinkTime
from loadgen.core.stages import validate_stages
from loadgen.core.thresholds import parse_thresholds, validate_thresholds
from loadgen.core.timeparse import parse_duration_to_seconds
from loadgen.exceptions import ConfigurationError, LoadgenError

ENV_BASE_URL = "LOADGEN_BASE_URL"
ENV_API_KEY = "LOADGEN_API_KEY"


def load_run_config(
    path: str | Path,
    *,
    base_url: str | None = None,
    api_key: str | None = None,
    seed: int | None = None,
    env: Mapping[str, str] | None = None,
) -> RunConfig:
    """Load a run definition.

    Expected shape:
      {
        "base_url": "http://localhost:8080",
        "stages": [
          {"duration": "2m", "target": 4},
          {"duration": "5m", "target": 4},
          {"duration": "3m", "target": 0}
        ],
        "scenarios": [
          {"name": "power_user", "weight": 0.4, "handler": "my_scenarios:power_user"},
          {"name": "regular_user", "weight": 0.6, "handler": "my_scenarios:regular_user"}
        ],
        "thresholds": {
          "http_req_duration": ["p(95)<1000", "p(99)<2000"],
          "http_req_failed": [{"threshold": "rate<0.1", "abortOnFail": true}]
        },
        "think_time": {"min": "500ms", "jitter": "2s"},
        "setup": "loadgen.scenarios.probe:health_probe",
        "teardown": null
      }

    Optional keys: ``api_key``, ``timeout``, ``retries``, ``tick``,
    ``graceful_stop``, ``max_vus``, ``sample_size``, ``seed``.

    Handlers are ``module:function`` references; the config file's directory
    is importable so scenario modules can sit next to it.  Explicit
    ``base_url``/``api_key`` arguments win over the file, which wins over the
    LOADGEN_BASE_URL / LOADGEN_API_KEY environment variables.
    """

    config_path = Path(path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError("CONFIG_NOT_FOUND", f"run config not found: {config_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            "INVALID_CONFIG",
            f"run config is not valid JSON: {exc}",
            {"path": str(config_path)},
        ) from exc

    if not isinstance(data, dict):
        raise ConfigurationError("INVALID_CONFIG", "run config must be a JSON object", {"path": str(config_path)})

    return build_run_config(
        data,
        search_path=config_path.resolve().parent,
        base_url=base_url,
        api_key=api_key,
        seed=seed,
        env=env,
    )


def build_run_config(
    data: Mapping[str, Any],
    *,
    search_path: Path | None = None,
    base_url: str | None = None,
    api_key: str | None = None,
    seed: int | None = None,
    env: Mapping[str, str] | None = None,
) -> RunConfig:
    env = os.environ if env is None else env

    if search_path is not None and str(search_path) not in sys.path:
        sys.path.insert(0, str(search_path))

    config = RunConfig(
        stages=_parse_stages(data.get("stages")),
        scenarios=_parse_scenarios(data.get("scenarios")),
        thresholds=parse_thresholds(data.get("thresholds") or {}),
        think_time=_parse_think_time(data.get("think_time")),
        base_url=base_url or data.get("base_url") or env.get(ENV_BASE_URL) or None,
        api_key=api_key or data.get("api_key") or env.get(ENV_API_KEY) or None,
        setup=_optional_callable(data.get("setup"), "setup"),
        teardown=_optional_callable(data.get("teardown"), "teardown"),
        timeout_seconds=_duration(data.get("timeout", 30.0), "timeout"),
        max_retries=_optional_int(data.get("retries"), "retries") or 0,
        tick_seconds=_duration(data.get("tick", 1.0), "tick"),
        graceful_stop_seconds=_duration(data.get("graceful_stop", 30.0), "graceful_stop"),
        max_vus=_optional_int(data.get("max_vus"), "max_vus"),
        sample_size=_optional_int(data.get("sample_size"), "sample_size"),
        seed=seed if seed is not None else _optional_int(data.get("seed"), "seed"),
    )
    validate_run_config(config)
    return config


def validate_run_config(config: RunConfig) -> None:
    """Reject configurations the engine cannot honor, before anything runs."""
    validate_stages(config.stages, max_vus=config.max_vus)
    validate_scenarios(config.scenarios)
    validate_thresholds(config.thresholds)

    think = config.think_time
    if think.min_seconds < 0 or think.jitter_seconds < 0:
        raise ConfigurationError(
            "INVALID_THINK_TIME",
            "think time min and jitter must be >= 0",
            {"min_seconds": think.min_seconds, "jitter_seconds": think.jitter_seconds},
        )
    if not config.tick_seconds > 0:
        raise ConfigurationError("INVALID_TICK", "tick must be > 0", {"tick_seconds": config.tick_seconds})
    if not config.timeout_seconds > 0:
        raise ConfigurationError("INVALID_TIMEOUT", "timeout must be > 0", {"timeout_seconds": config.timeout_seconds})
    if config.graceful_stop_seconds < 0:
        raise ConfigurationError(
            "INVALID_GRACEFUL_STOP",
            "graceful_stop must be >= 0",
            {"graceful_stop_seconds": config.graceful_stop_seconds},
        )
    if config.max_retries < 0:
        raise ConfigurationError("INVALID_RETRIES", "retries must be >= 0", {"retries": config.max_retries})
    if config.max_vus is not None and config.max_vus < 0:
        raise ConfigurationError("INVALID_MAX_VUS", "max_vus must be >= 0", {"max_vus": config.max_vus})
    if config.sample_size is not None and config.sample_size <= 0:
        raise ConfigurationError(
            "INVALID_SAMPLE_SIZE",
            "sample_size must be > 0 (omit it for exact percentiles)",
            {"sample_size": config.sample_size},
        )
    for hook_name, hook in (("setup", config.setup), ("teardown", config.teardown)):
        if hook is not None and not callable(hook):
            raise ConfigurationError("INVALID_HOOK", f"{hook_name} must be callable")


def resolve_callable(reference: str) -> Callable[..., Any]:
    """Import ``package.module:attribute`` and return the callable."""
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            "INVALID_HANDLER_REFERENCE",
            "handler must be written as 'module:function'",
            {"reference": reference},
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(
            "HANDLER_IMPORT_FAILED",
            f"cannot import module {module_name!r}: {exc}",
            {"reference": reference},
        ) from exc

    target: Any = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigurationError(
                "HANDLER_NOT_FOUND",
                f"{module_name!r} has no attribute {attr!r}",
                {"reference": reference},
            ) from exc

    if not callable(target):
        raise ConfigurationError("HANDLER_NOT_CALLABLE", f"{reference!r} is not callable", {"reference": reference})
    return target


def _parse_stages(raw: Any) -> list[Stage]:
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError("INVALID_STAGES", "config must contain a non-empty 'stages' list")

    stages: list[Stage] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigurationError("INVALID_STAGES", f"stage {index} must be an object", {"stage": index})
        target = entry.get("target")
        if isinstance(target, bool) or not isinstance(target, int):
            raise ConfigurationError(
                "INVALID_STAGE_TARGET",
                f"stage {index} target must be a non-negative integer",
                {"stage": index, "target": target},
            )
        if "duration" not in entry:
            raise ConfigurationError("INVALID_STAGE_DURATION", f"stage {index} is missing 'duration'", {"stage": index})
        stages.append(Stage(duration_seconds=_duration(entry["duration"], f"stages[{index}].duration"), target=target))
    return stages


def _parse_scenarios(raw: Any) -> list[ScenarioWeight]:
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError("INVALID_SCENARIOS", "config must contain a non-empty 'scenarios' list")

    scenarios: list[ScenarioWeight] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigurationError("INVALID_SCENARIOS", f"scenario {index} must be an object", {"scenario": index})

        handler_ref = entry.get("handler")
        if not isinstance(handler_ref, str):
            raise ConfigurationError(
                "INVALID_SCENARIO_HANDLER",
                f"scenario {index} needs a 'handler' string",
                {"scenario": index},
            )
        name = str(entry.get("name") or handler_ref.rpartition(":")[2])
        weight = entry.get("weight")
        if isinstance(weight, bool) or not isinstance(weight, (int, float)):
            raise ConfigurationError(
                "INVALID_SCENARIO_WEIGHT",
                f"scenario {name!r} weight must be a number",
                {"scenario": name, "weight": weight},
            )
        scenarios.append(ScenarioWeight(name=name, probability=float(weight), handler=resolve_callable(handler_ref)))
    return scenarios


def _parse_think_time(raw: Any) -> ThinkTime:
    if raw is None:
        return ThinkTime()
    if not isinstance(raw, dict):
        raise ConfigurationError("INVALID_THINK_TIME", "think_time must be an object with 'min' and 'jitter'")
    defaults = ThinkTime()
    return ThinkTime(
        min_seconds=_duration(raw.get("min", defaults.min_seconds), "think_time.min"),
        jitter_seconds=_duration(raw.get("jitter", defaults.jitter_seconds), "think_time.jitter"),
    )


def _optional_callable(raw: Any, field_name: str) -> Callable[..., Any] | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ConfigurationError("INVALID_HOOK", f"{field_name} must be a 'module:function' string or null")
    return resolve_callable(raw)


def _optional_int(raw: Any, field_name: str) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigurationError("INVALID_CONFIG", f"{field_name} must be an integer", {field_name: raw})
    return raw


def _duration(raw: Any, field_name: str) -> float:
    try:
        seconds = parse_duration_to_seconds(raw)
    except LoadgenError as exc:
        raise ConfigurationError(
            "INVALID_DURATION",
            f"{field_name}: {exc.message}",
            {"field": field_name, "provided": raw},
        ) from exc
    except (AttributeError, TypeError) as exc:
        raise ConfigurationError(
            "INVALID_DURATION",
            f"{field_name} must be a duration string or number of seconds",
            {"field": field_name, "provided": raw},
        ) from exc
    if math.isinf(seconds) or math.isnan(seconds):
        raise ConfigurationError("INVALID_DURATION", f"{field_name} must be finite", {"field": field_name})
    return seconds
