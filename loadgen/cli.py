"""
Command-line entry point.

Usage examples::

    # Built-in default scenario with environment/class defaults:
    loadgen run --base-url http://localhost:8080

    # Payment scenario, 20 VUs for one minute, extra threshold:
    loadgen run --scenario payment --vus 20 --duration 1m \\
        --threshold "payment_unprocessed: count<50"

    # Everything from a YAML run file, JSON summary for tooling:
    loadgen run --config loadtest.yml --summary-json summary.json

Exit codes follow the three-state convention used by the CI gate:

- ``0`` — all thresholds passed
- ``1`` — at least one threshold was breached
- ``2`` — the run could not be set up or crashed
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from loadgen.config import RunConfig, get_config, load_run_config
from loadgen.controller import EXIT_SCRIPT_ERROR, RunController, render_report
from loadgen.errors import SetupError
from loadgen.steps import SCENARIOS

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loadgen",
        description="Drive HTTP endpoints with virtual users and gate on thresholds.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root log level (logs go to stderr)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a load test")
    run.add_argument("--config", type=Path, help="YAML run file")
    run.add_argument("--env", help="Config environment: development, testing or ci")
    run.add_argument("--base-url", help="Target base URL (env: BASE_URL)")
    run.add_argument("--vus", type=int, help="Concurrent virtual users")
    run.add_argument("--duration", help="Run duration, e.g. 30s or 1m30s")
    run.add_argument("--iterations", type=int, help="Total iterations shared by all VUs")
    run.add_argument("--sleep", dest="iteration_sleep", help="Pause between iterations, e.g. 500ms")
    run.add_argument("--timeout", dest="request_timeout", help="Per-request timeout, e.g. 10s")
    run.add_argument("--graceful-stop", help="Max drain time on stop, e.g. 30s")
    run.add_argument("--scenario", choices=sorted(SCENARIOS), help="Built-in scenario")
    run.add_argument(
        "--threshold",
        action="append",
        dest="thresholds",
        metavar="EXPR",
        help='Threshold such as "error_rate: rate<0.5"; repeatable, replaces configured thresholds',
    )
    run.add_argument("--seed", type=int, help="Seed for randomised path parameters")
    run.add_argument("--summary-json", type=Path, help="Write the run summary as JSON")

    subparsers.add_parser("scenarios", help="List built-in scenarios")
    return parser


def _run_config_from_args(args: argparse.Namespace) -> RunConfig:
    config_class = get_config(args.env)
    overrides = {
        "base_url": args.base_url,
        "vus": args.vus,
        "duration": args.duration,
        "max_iterations": args.iterations,
        "iteration_sleep": args.iteration_sleep,
        "request_timeout": args.request_timeout,
        "graceful_stop": args.graceful_stop,
        "scenario": args.scenario,
        "thresholds": args.thresholds,
    }
    if args.config is not None:
        return load_run_config(args.config, config_class, **overrides)
    return RunConfig.from_config(config_class, **overrides)


def _cmd_run(args: argparse.Namespace) -> int:
    run_config = _run_config_from_args(args)
    controller = RunController(run_config, seed=args.seed)
    report = controller.run()

    print(render_report(report))
    if args.summary_json is not None:
        args.summary_json.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        logger.info("Wrote JSON summary to %s", args.summary_json)
    return report.exit_code


def _cmd_scenarios(_args: argparse.Namespace) -> int:
    for name, scenario in sorted(SCENARIOS.items()):
        print(f"{name:<10}{scenario.description}")
        for step in scenario.steps:
            print(f"    {step.method:<5}{step.path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """
    Entry point: parse arguments, run the command, map errors to exit codes.

    Returns:
        ``0`` if all thresholds pass, ``1`` if any is breached, or ``2``
        on setup errors and unexpected failures.
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    commands = {"run": _cmd_run, "scenarios": _cmd_scenarios}
    try:
        return commands[args.command](args)
    except SetupError as exc:
        print(f"Load test aborted: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR
    except Exception as exc:  # pragma: no cover - last-resort CLI guard
        logger.exception("Load test crashed")
        print(f"Load test failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
