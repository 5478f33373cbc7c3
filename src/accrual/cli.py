"""Command-line entry point: replay scenarios and run randomized checks."""

import argparse
import json
import logging
import sys

from .config.loader import load_config, load_scenario
from .reporting.export import export_csv, export_json
from .simulation.monte_carlo import MonteCarloRunner, summarize_results
from .simulation.runner import ScenarioRunner


def _run(args) -> int:
    config = load_config(args.config)
    scenario = load_scenario(args.scenario)
    result = ScenarioRunner(config, check_every_step=args.check_every_step).run(scenario)

    if args.csv:
        export_csv(result, args.csv)
    if args.json:
        export_json(result, args.json)

    print(json.dumps(result.final_metrics, indent=2))
    for warning in result.warnings:
        print(f"[{warning.severity}] {warning.category}: {warning.message}", file=sys.stderr)
    return 1 if result.unexpected or result.invariant_errors else 0


def _simulate(args) -> int:
    config = load_config(args.config)
    results = MonteCarloRunner(config).run(num_runs=args.runs, random_seed=args.seed)
    summary = summarize_results(results)
    print(json.dumps(summary, indent=2))
    return 1 if summary['invariant_errors'] else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="accrual-engine", description=__doc__)
    parser.add_argument("--config", help="Engine config YAML (defaults to bundled defaults)")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="Replay a scenario YAML")
    run_parser.add_argument("scenario")
    run_parser.add_argument("--csv", help="Write snapshot history to CSV")
    run_parser.add_argument("--json", help="Write step outcomes and metrics to JSON")
    run_parser.add_argument("--check-every-step", action="store_true")
    run_parser.set_defaults(func=_run)

    sim_parser = sub.add_parser("simulate", help="Randomized invariant runs")
    sim_parser.add_argument("--runs", type=int)
    sim_parser.add_argument("--seed", type=int)
    sim_parser.set_defaults(func=_simulate)

    args = parser.parse_args(argv)
    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
