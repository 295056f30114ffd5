"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the indicator engine.

- Provides argparse-based CLI
- Runs the scheduler loop, a single tick, or operator
  commands (status, upcoming, manual run, dry run, cancel,
  history)
- Loads configuration from CLI and environment

============================================================
USAGE
============================================================
python -m orchestrator.cli run
python -m orchestrator.cli once
python -m orchestrator.cli status --indicator-id 12
python -m orchestrator.cli execute 12
python -m orchestrator.cli init-db

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from core.exceptions import ConfigurationError, StoreUnavailableError
from storage.database import SchemaError, create_database_engine, initialize_database

from .core import create_application, setup_logging
from .models import SchedulerConfig


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="kpi-scheduler",
        description="Indicator scheduling and execution engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run       - Run the scheduler loop until SIGINT/SIGTERM
  once      - Run a single scan and exit
  status    - Show execution status of indicators
  upcoming  - Show the upcoming execution queue
  execute   - Run one indicator now (manual context)
  test      - Dry run one indicator (no alert, no history)
  cancel    - Force-clear a running indicator
  history   - Show recent executions of one indicator
  init-db   - Create the engine tables

Examples:
  %(prog)s run --tick-interval 30
  %(prog)s status --indicator-id 12
  %(prog)s test 12 --window-minutes 120
        """
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Log level (default: LOG_LEVEL or INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default=None,
        help="Log format (default: LOG_FORMAT or json)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the scheduler loop")
    run_parser.add_argument(
        "--tick-interval",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Seconds between scans (default: TICK_INTERVAL_SECONDS or 60)",
    )

    subparsers.add_parser("once", help="Run a single scan and exit")

    status_parser = subparsers.add_parser("status", help="Show indicator status")
    status_parser.add_argument("--indicator-id", type=int, default=None)

    upcoming_parser = subparsers.add_parser("upcoming", help="Show upcoming executions")
    upcoming_parser.add_argument("--limit", type=int, default=20)

    execute_parser = subparsers.add_parser("execute", help="Run one indicator now")
    execute_parser.add_argument("indicator_id", type=int)

    test_parser = subparsers.add_parser("test", help="Dry run one indicator")
    test_parser.add_argument("indicator_id", type=int)
    test_parser.add_argument("--window-minutes", type=int, default=None)

    cancel_parser = subparsers.add_parser("cancel", help="Force-clear a running indicator")
    cancel_parser.add_argument("indicator_id", type=int)

    history_parser = subparsers.add_parser("history", help="Show recent executions")
    history_parser.add_argument("indicator_id", type=int)
    history_parser.add_argument("--limit", type=int, default=20)

    subparsers.add_parser("init-db", help="Create the engine tables")

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []

    if getattr(args, "tick_interval", None) is not None and args.tick_interval < 1:
        errors.append("--tick-interval must be at least 1 second")

    if getattr(args, "limit", 1) < 1:
        errors.append("--limit must be at least 1")

    window = getattr(args, "window_minutes", None)
    if window is not None and window < 1:
        errors.append("--window-minutes must be at least 1")

    return errors


def build_config(args: argparse.Namespace) -> SchedulerConfig:
    """Environment configuration with CLI overrides applied."""
    config = SchedulerConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    if getattr(args, "tick_interval", None) is not None:
        config.tick_interval_seconds = args.tick_interval
    return config


# ============================================================
# COMMANDS
# ============================================================

def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def async_main(args: argparse.Namespace, config: SchedulerConfig) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    app = create_application(config)

    try:
        if args.command == "run":
            await app.run()
            return 0

        if args.command == "once":
            result = await app.loop.run_once()
            _print_json(result.to_dict())
            return 1 if result.scan_failed else 0

        if args.command == "status":
            if args.indicator_id is not None:
                ids = [args.indicator_id]
            else:
                ids = [i.indicator_id for i in await app.store.list_indicators()]
            reports = []
            for indicator_id in ids:
                report = await app.loop.get_indicator_status(indicator_id)
                if report is None:
                    print(f"Error: indicator {indicator_id} not found", file=sys.stderr)
                    return 1
                reports.append(report.to_dict())
            _print_json(reports)
            return 0

        if args.command == "upcoming":
            for item in await app.loop.get_upcoming(args.limit):
                marker = "*" if item.is_due else " "
                print(
                    f"{marker} {item.next_run.isoformat()}  [{item.indicator_id:>5}] "
                    f"{item.name}  ({item.schedule_description})"
                )
            return 0

        if args.command == "execute":
            outcome = await app.service.execute_by_id(args.indicator_id)
            _print_json(outcome.to_dict())
            return 0 if outcome.success else 1

        if args.command == "test":
            outcome = await app.service.test_indicator(args.indicator_id, args.window_minutes)
            _print_json(outcome.to_dict())
            return 0 if outcome.success else 1

        if args.command == "cancel":
            cancelled = await app.service.cancel_execution(args.indicator_id)
            print("cancelled" if cancelled else "not running")
            return 0 if cancelled else 1

        if args.command == "history":
            attempts = await app.service.get_history(args.indicator_id, args.limit)
            for attempt in attempts:
                state = "ok  " if attempt.success else "FAIL"
                print(
                    f"{attempt.executed_at.isoformat()}  {state}  "
                    f"{attempt.execution_context.value:<9} {attempt.duration_ms:>7}ms  "
                    f"value={attempt.value}  {attempt.error_message or ''}"
                )
            return 0

        return 1

    except StoreUnavailableError as e:
        logger.critical(f"Store unavailable: {e}")
        return 2
    finally:
        await app.close()


def init_db(config: SchedulerConfig) -> int:
    """Create the engine tables."""
    engine = create_database_engine(config.database_url)
    try:
        initialize_database(engine)
    except SchemaError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()
    return 0


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    config = build_config(args)
    config_errors = config.validate()
    if config_errors:
        for error in config_errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)

    if args.command == "init-db":
        return init_db(config)

    if args.command == "run":
        print_banner(config)

    try:
        return asyncio.run(async_main(args, config))
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


def print_banner(config: SchedulerConfig) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  KPI SCHEDULER")
    print("  Indicator Scheduling & Execution Engine")
    print("=" * 60)
    print(f"  Interval:   {config.tick_interval_seconds}s")
    print(f"  Parallel:   {config.max_parallel_indicators}")
    print(f"  Collector:  {config.collector_mode}")
    print(f"  Telegram:   {config.telegram_enabled}")
    print(f"  Log Level:  {config.log_level}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
