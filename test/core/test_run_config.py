"""Tests for loading and validating JSON run definitions."""

from __future__ import annotations

import json
import uuid
from pathlib import Path

import pytest

from loadgen.core.config import (
    ENV_API_KEY,
    ENV_BASE_URL,
    build_run_config,
    load_run_config,
    resolve_callable,
    validate_run_config,
)
from loadgen.core.models import RunConfig, ScenarioWeight, Stage, ThinkTime
from loadgen.exceptions import ConfigurationError, ValidationError

FLOWS_SOURCE = '''
calls = []

async def browse():
    calls.append("browse")

def search():
    calls.append("search")

def prepare():
    return {"token": "abc"}

def cleanup(data):
    calls.append(("cleanup", data))

NOT_CALLABLE = 42
'''


@pytest.fixture
def flows_module(tmp_path: Path) -> str:
    name = f"flows_{uuid.uuid4().hex[:12]}"
    (tmp_path / f"{name}.py").write_text(FLOWS_SOURCE, encoding="utf-8")
    return name


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "run.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def _base(flows: str) -> dict:
    return {
        "stages": [
            {"duration": "10s", "target": 4},
            {"duration": "30s", "target": 4},
            {"duration": "10s", "target": 0},
        ],
        "scenarios": [
            {"name": "browse", "weight": 0.4, "handler": f"{flows}:browse"},
            {"name": "search", "weight": 0.6, "handler": f"{flows}:search"},
        ],
    }


class TestLoadRunConfig:
    def test_full_definition(self, tmp_path: Path, flows_module: str) -> None:
        data = _base(flows_module)
        data.update(
            {
                "base_url": "http://target:8080",
                "api_key": "k-1",
                "thresholds": {
                    "http_req_duration": ["p(95)<1000", "p(99)<2000"],
                    "http_req_failed": [{"threshold": "rate<0.1", "abortOnFail": True}],
                },
                "think_time": {"min": "250ms", "jitter": "1s"},
                "setup": f"{flows_module}:prepare",
                "teardown": f"{flows_module}:cleanup",
                "timeout": "5s",
                "retries": 2,
                "tick": "500ms",
                "graceful_stop": "10s",
                "max_vus": 10,
                "sample_size": 1000,
                "seed": 7,
            }
        )
        config = load_run_config(_write(tmp_path, data), env={})

        assert [s.target for s in config.stages] == [4, 4, 0]
        assert config.total_duration_seconds == 50.0
        assert [s.name for s in config.scenarios] == ["browse", "search"]
        assert config.scenarios[1].probability == 0.6
        assert len(config.thresholds) == 3
        assert config.thresholds[2].abort_on_fail is True
        assert config.think_time == ThinkTime(min_seconds=0.25, jitter_seconds=1.0)
        assert config.base_url == "http://target:8080"
        assert config.api_key == "k-1"
        assert config.setup() == {"token": "abc"}
        assert config.timeout_seconds == 5.0
        assert config.max_retries == 2
        assert config.tick_seconds == 0.5
        assert config.graceful_stop_seconds == 10.0
        assert config.max_vus == 10
        assert config.sample_size == 1000
        assert config.seed == 7

    def test_defaults(self, tmp_path: Path, flows_module: str) -> None:
        config = load_run_config(_write(tmp_path, _base(flows_module)), env={})

        assert config.thresholds == []
        assert config.think_time == ThinkTime()
        assert config.base_url is None
        assert config.setup is None
        assert config.timeout_seconds == 30.0
        assert config.tick_seconds == 1.0
        assert config.graceful_stop_seconds == 30.0
        assert config.sample_size is None

    def test_scenario_name_defaults_to_function(self, tmp_path: Path, flows_module: str) -> None:
        data = _base(flows_module)
        del data["scenarios"][0]["name"]
        config = load_run_config(_write(tmp_path, data), env={})
        assert config.scenarios[0].name == "browse"

    def test_environment_fills_unset_values(self, tmp_path: Path, flows_module: str) -> None:
        env = {ENV_BASE_URL: "http://from-env", ENV_API_KEY: "env-key"}
        config = load_run_config(_write(tmp_path, _base(flows_module)), env=env)
        assert config.base_url == "http://from-env"
        assert config.api_key == "env-key"

    def test_precedence_argument_file_env(self, tmp_path: Path, flows_module: str) -> None:
        data = _base(flows_module)
        data["base_url"] = "http://from-file"
        env = {ENV_BASE_URL: "http://from-env"}
        path = _write(tmp_path, data)

        assert load_run_config(path, env=env).base_url == "http://from-file"
        assert load_run_config(path, base_url="http://from-flag", env=env).base_url == "http://from-flag"

    def test_seed_argument_wins(self, tmp_path: Path, flows_module: str) -> None:
        data = _base(flows_module)
        data["seed"] = 1
        assert load_run_config(_write(tmp_path, data), seed=99, env={}).seed == 99

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            load_run_config(tmp_path / "nope.json")
        assert exc_info.value.code == "CONFIG_NOT_FOUND"

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "run.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError) as exc_info:
            load_run_config(path)
        assert exc_info.value.code == "INVALID_CONFIG"

    def test_top_level_must_be_object(self, tmp_path: Path) -> None:
        path = tmp_path / "run.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(ConfigurationError) as exc_info:
            load_run_config(path)
        assert exc_info.value.code == "INVALID_CONFIG"


class TestRejectedDefinitions:
    @pytest.mark.parametrize(
        "mutate, code",
        [
            (lambda d: d.update(stages=[]), "INVALID_STAGES"),
            (lambda d: d["stages"].__setitem__(0, {"duration": "10s", "target": -1}), "INVALID_STAGE_TARGET"),
            (lambda d: d["stages"].__setitem__(0, {"duration": "10s", "target": 1.5}), "INVALID_STAGE_TARGET"),
            (lambda d: d["stages"].__setitem__(0, {"target": 1}), "INVALID_STAGE_DURATION"),
            (lambda d: d["stages"].__setitem__(0, {"duration": "-5s", "target": 1}), "INVALID_DURATION"),
            (lambda d: d.update(stages=[{"duration": 0, "target": 3}]), "INVALID_STAGES"),
            (lambda d: d.update(max_vus=2), "UNREACHABLE_STAGE_TARGET"),
            (lambda d: d["scenarios"][0].update(weight=0.5), "INVALID_SCENARIO_WEIGHTS"),
            (lambda d: d["scenarios"][0].update(weight="heavy"), "INVALID_SCENARIO_WEIGHT"),
            (lambda d: d["scenarios"][0].pop("handler"), "INVALID_SCENARIO_HANDLER"),
            (lambda d: d.update(thresholds={"http_req_failed": ["p(95)<1"]}), "INVALID_THRESHOLD_STATISTIC"),
            (lambda d: d.update(thresholds={"http_req_failed": 5}), "INVALID_THRESHOLDS"),
            (lambda d: d.update(think_time="2s"), "INVALID_THINK_TIME"),
            (lambda d: d.update(tick=0), "INVALID_TICK"),
            (lambda d: d.update(retries=-1), "INVALID_RETRIES"),
            (lambda d: d.update(sample_size=0), "INVALID_SAMPLE_SIZE"),
            (lambda d: d.update(max_vus="ten"), "INVALID_CONFIG"),
            (lambda d: d.update(setup=123), "INVALID_HOOK"),
        ],
    )
    def test_configuration_errors(self, tmp_path: Path, flows_module: str, mutate, code: str) -> None:
        data = _base(flows_module)
        mutate(data)
        with pytest.raises(ConfigurationError) as exc_info:
            load_run_config(_write(tmp_path, data), env={})
        assert exc_info.value.code == code

    def test_bad_threshold_expression(self, tmp_path: Path, flows_module: str) -> None:
        data = _base(flows_module)
        data["thresholds"] = {"http_req_duration": ["p95 under a second"]}
        with pytest.raises(ValidationError) as exc_info:
            load_run_config(_write(tmp_path, data), env={})
        assert exc_info.value.code == "INVALID_THRESHOLD"


class TestResolveCallable:
    def test_resolves_function(self, tmp_path: Path, flows_module: str) -> None:
        build_run_config(_base(flows_module), search_path=tmp_path, env={})
        assert resolve_callable(f"{flows_module}:prepare")() == {"token": "abc"}

    def test_resolves_dotted_attribute(self) -> None:
        fn = resolve_callable("loadgen.core.stages:StageSchedule.target_at")
        assert fn.__name__ == "target_at"

    @pytest.mark.parametrize(
        "reference, code",
        [
            ("no_colon", "INVALID_HANDLER_REFERENCE"),
            (":missing_module", "INVALID_HANDLER_REFERENCE"),
            ("loadgen_module_that_does_not_exist:fn", "HANDLER_IMPORT_FAILED"),
            ("loadgen.core.config:does_not_exist", "HANDLER_NOT_FOUND"),
            ("loadgen.core.config:ENV_BASE_URL", "HANDLER_NOT_CALLABLE"),
        ],
    )
    def test_bad_references(self, reference: str, code: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_callable(reference)
        assert exc_info.value.code == code


class TestValidateRunConfig:
    def _config(self, **overrides) -> RunConfig:
        values = {
            "stages": [Stage(1.0, 1)],
            "scenarios": [ScenarioWeight("a", 1.0, lambda: None)],
        }
        values.update(overrides)
        return RunConfig(**values)

    def test_accepts_minimal(self) -> None:
        validate_run_config(self._config())

    def test_rejects_negative_think_time(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            validate_run_config(self._config(think_time=ThinkTime(min_seconds=-1.0)))
        assert exc_info.value.code == "INVALID_THINK_TIME"

    def test_rejects_negative_graceful_stop(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            validate_run_config(self._config(graceful_stop_seconds=-1.0))
        assert exc_info.value.code == "INVALID_GRACEFUL_STOP"

    def test_rejects_zero_timeout(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            validate_run_config(self._config(timeout_seconds=0.0))
        assert exc_info.value.code == "INVALID_TIMEOUT"
