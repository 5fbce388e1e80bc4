"""
Main entry point for the OmniVerse budget planning service.
"""
import sys
import json
import argparse
import uvicorn

from omniverse.config.settings import settings
from omniverse.optimization.optimizer import BudgetOptimizer, BudgetConstraints
from omniverse.optimization.scenarios import ScenarioSimulator
from omniverse.utils.exceptions import OmniVerseException
from omniverse.utils.logging import setup_logging


def _parse_channel_budgets(values):
    """Parse repeated "Channel=amount" arguments into a dict."""
    budgets = {}
    for value in values or []:
        if "=" not in value:
            raise argparse.ArgumentTypeError(f"Expected CHANNEL=AMOUNT, got {value!r}")
        channel, amount = value.rsplit("=", 1)
        try:
            budgets[channel.strip()] = float(amount)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid amount for {channel.strip()}: {amount!r}")
    return budgets


def create_parser():
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(description="OmniVerse Budget Planning Service")

    parser.add_argument(
        "--log-level",
        default=settings.logging.level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level"
    )

    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=settings.api.host, help="Host to bind the server to")
    serve.add_argument("--port", type=int, default=settings.api.port, help="Port to bind the server to")
    serve.add_argument(
        "--reload",
        action="store_true",
        default=settings.api.reload,
        help="Enable auto-reload on code changes"
    )

    optimize = subparsers.add_parser("optimize", help="Optimize a budget and print the result as JSON")
    optimize.add_argument("budget", type=float, help="Total budget to allocate")
    optimize.add_argument("--strict", action="store_true", default=settings.optimization.strict_constraints,
                          help="Fail on constraint problems instead of warning")
    optimize.add_argument("--min", dest="min_budgets", action="append", metavar="CHANNEL=AMOUNT",
                          help="Minimum budget for a channel (repeatable)")
    optimize.add_argument("--max", dest="max_budgets", action="append", metavar="CHANNEL=AMOUNT",
                          help="Maximum budget for a channel (repeatable)")
    optimize.add_argument("--fixed", dest="fixed_budgets", action="append", metavar="CHANNEL=AMOUNT",
                          help="Locked budget for a channel (repeatable)")

    simulate = subparsers.add_parser("simulate", help="Simulate a budget reallocation and print it as JSON")
    simulate.add_argument("changes", nargs="+", metavar="CHANNEL=AMOUNT",
                          help="Proposed budget per channel")

    return parser


def _build_optimizer(strict: bool) -> BudgetOptimizer:
    config = {**settings.get_optimizer_config(), "strict": strict}
    return BudgetOptimizer(**config, config=settings.optimization)


def run_optimize(args) -> int:
    constraints = BudgetConstraints(
        min_budgets=_parse_channel_budgets(args.min_budgets),
        max_budgets=_parse_channel_budgets(args.max_budgets),
        fixed_budgets=_parse_channel_budgets(args.fixed_budgets)
    )
    result = _build_optimizer(args.strict).optimize(args.budget, constraints=constraints)
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def run_simulate(args) -> int:
    simulator = ScenarioSimulator(
        _build_optimizer(settings.optimization.strict_constraints), config=settings.scenarios
    )
    impact = simulator.simulate(_parse_channel_budgets(args.changes))
    print(json.dumps(impact.to_dict(), indent=2))
    return 0


def run_server(args) -> int:
    print(f"Starting OmniVerse API server on {args.host}:{args.port}")
    print(f"Environment: {settings.env.value}")
    print(f"Log level: {args.log_level}")

    try:
        uvicorn.run(
            "omniverse.api.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=args.log_level.lower()
        )
    except KeyboardInterrupt:
        print("\nShutting down OmniVerse API server...")
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    settings.logging.level = args.log_level
    setup_logging()

    if args.command is None:
        parser.print_help()
        return 1

    try:
        if args.command == "optimize":
            return run_optimize(args)
        if args.command == "simulate":
            return run_simulate(args)
        return run_server(args)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except OmniVerseException as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
