from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
from pathlib import Path

from loadgen.logger import session_logger as logger

from loadgen.api.report import build_run_report, render_summary
from loadgen.core.config import ENV_API_KEY, ENV_BASE_URL, load_run_config, validate_run_config
from loadgen.core.engine import Runner
from loadgen.exceptions import LoadgenError, SetupAbortedError
from loadgen.scenarios.load import PROFILES, profile_stages

EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_CONFIG_ERROR = 2
EXIT_SETUP_ABORTED = 3


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Staged load generator")
    parser.add_argument(
        "--config",
        type=str,
        required=True,
        help="Path to the run config JSON (stages, scenarios, thresholds)",
    )
    parser.add_argument(
        "--profile",
        type=str,
        choices=sorted(PROFILES),
        default=None,
        help="Replace the config's stages with a built-in ramp profile",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help=f"Target base URL; wins over the config file and ${ENV_BASE_URL}",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help=f"API key sent as X-API-Key; wins over the config file and ${ENV_API_KEY}",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for scenario selection and think-time draws",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write summary report JSON to this path",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Console log level",
    )
    parser.add_argument(
        "--no-summary",
        action="store_true",
        help="Do not print the end-of-run summary table",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if hasattr(logger, "set_level"):
        logger.set_level(args.log_level)

    try:
        config = load_run_config(
            args.config,
            base_url=args.base_url,
            api_key=args.api_key,
            seed=args.seed,
        )
        if args.profile:
            config = dataclasses.replace(config, stages=profile_stages(args.profile))
            validate_run_config(config)
    except LoadgenError as exc:
        logger.error(
            "run.invalid_config",
            event="run.invalid_config",
            code=exc.code,
            error=exc.message,
            details=exc.details,
            recovery="Fix the run config; nothing was started",
        )
        return EXIT_CONFIG_ERROR

    runner = Runner(config, logger=logger)
    try:
        result = asyncio.run(runner.run())
    except SetupAbortedError as exc:
        logger.error(
            "run.aborted",
            event="run.aborted",
            code=exc.code,
            error=exc.message,
            spawned_vus=runner.spawned_vus,
        )
        return EXIT_SETUP_ABORTED

    if not args.no_summary:
        print("\n".join(render_summary(result)))

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = build_run_report(config, result)
        output_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

        logger.info(
            "run.report_written",
            event="run.report_written",
            path=str(output_path),
        )

    return EXIT_PASS if result.passed else EXIT_THRESHOLD_BREACH


if __name__ == "__main__":
    raise SystemExit(main())
