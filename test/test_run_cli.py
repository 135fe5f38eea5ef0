"""End-to-end CLI runs against the local stub target service."""

from __future__ import annotations

import json
import uuid
from pathlib import Path

import pytest

from loadgen.run import EXIT_CONFIG_ERROR, EXIT_PASS, EXIT_SETUP_ABORTED, EXIT_THRESHOLD_BREACH, main

FLOWS_SOURCE = '''
from loadgen import check, current


async def list_indexes():
    response = await current().http.get("/v1/indexes")
    check(response, {"status is 200": lambda r: r.status_code == 200})


async def broken():
    await current().http.get("/fail")
'''


@pytest.fixture
def run_dir(tmp_path: Path):
    flows = f"cli_flows_{uuid.uuid4().hex[:12]}"
    (tmp_path / f"{flows}.py").write_text(FLOWS_SOURCE, encoding="utf-8")

    def write(scenario: str, **extra) -> Path:
        data = {
            "stages": [{"duration": "100ms", "target": 2}, {"duration": "300ms", "target": 2}],
            "scenarios": [{"name": scenario, "weight": 1.0, "handler": f"{flows}:{scenario}"}],
            "thresholds": {
                "http_req_failed": ["rate<0.1"],
                "checks": ["rate>0.95"],
            },
            "think_time": {"min": "10ms", "jitter": "0s"},
            "setup": "loadgen.scenarios.probe:health_probe",
            "tick": "50ms",
            "graceful_stop": "2s",
            "seed": 11,
        }
        data.update(extra)
        path = tmp_path / "run.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return write


class TestExitCodes:
    def test_passing_run_writes_report(self, run_dir, stub_server, tmp_path: Path) -> None:
        config = run_dir("list_indexes")
        output = tmp_path / "out" / "report.json"

        code = main(["--config", str(config), "--base-url", stub_server.base_url, "--output", str(output)])

        assert code == EXIT_PASS
        assert stub_server.hits["/health"] == 1
        assert stub_server.hits["/v1/indexes"] > 0

        report = json.loads(output.read_text(encoding="utf-8"))
        assert report["result"]["passed"] is True
        assert report["result"]["peak_vus"] == 2
        assert {t["metric"] for t in report["thresholds"]} == {"http_req_failed", "checks"}
        assert "checks{check:status is 200}" in report["metrics"]

    def test_threshold_breach(self, run_dir, stub_server) -> None:
        config = run_dir("broken", thresholds={"http_req_failed": ["rate<0.1"]})

        code = main(["--config", str(config), "--base-url", stub_server.base_url, "--no-summary"])

        assert code == EXIT_THRESHOLD_BREACH
        assert stub_server.hits["/fail"] > 0

    def test_setup_aborted(self, run_dir, stub_server) -> None:
        stub_server.health_status = 503
        config = run_dir("list_indexes")

        code = main(["--config", str(config), "--base-url", stub_server.base_url, "--no-summary"])

        assert code == EXIT_SETUP_ABORTED
        assert "/v1/indexes" not in stub_server.hits

    def test_invalid_config(self, run_dir, stub_server) -> None:
        config = run_dir("list_indexes", stages=[{"duration": "1s", "target": -2}])

        code = main(["--config", str(config), "--base-url", stub_server.base_url])

        assert code == EXIT_CONFIG_ERROR
        assert stub_server.hits == {}

    def test_missing_config_file(self, tmp_path: Path) -> None:
        assert main(["--config", str(tmp_path / "missing.json")]) == EXIT_CONFIG_ERROR

    def test_unknown_profile_is_usage_error(self, run_dir) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(run_dir("list_indexes")), "--profile", "soak"])
        assert exc_info.value.code == 2


class TestTargetPrecedence:
    UNREACHABLE = "http://127.0.0.1:9"

    def test_file_wins_over_environment(self, run_dir, stub_server, monkeypatch) -> None:
        monkeypatch.setenv("LOADGEN_BASE_URL", self.UNREACHABLE)
        config = run_dir("list_indexes", base_url=stub_server.base_url)

        assert main(["--config", str(config), "--no-summary"]) == EXIT_PASS
        assert stub_server.hits["/health"] == 1

    def test_environment_fills_missing_file_value(self, run_dir, stub_server, monkeypatch) -> None:
        monkeypatch.setenv("LOADGEN_BASE_URL", stub_server.base_url)
        config = run_dir("list_indexes")

        assert main(["--config", str(config), "--no-summary"]) == EXIT_PASS

    def test_flag_wins_over_file_and_environment(self, run_dir, stub_server, monkeypatch) -> None:
        monkeypatch.setenv("LOADGEN_BASE_URL", self.UNREACHABLE)
        config = run_dir("list_indexes", base_url=self.UNREACHABLE)

        code = main(["--config", str(config), "--base-url", stub_server.base_url, "--no-summary"])

        assert code == EXIT_PASS
