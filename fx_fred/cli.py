"""Command line interface for managing series and running FRED imports."""

from __future__ import annotations

import argparse
import sys
import time
from datetime import timezone
from typing import Sequence

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from fx_fred import FxFred
from fx_fred.config import ImportSettings
from fx_fred.exceptions import FxFredError
from fx_fred.ingestion.models import ImportResult
from fx_fred.scheduling.coordinator import ImportRunState
from fx_fred.scheduling.timer import ApschedulerTaskScheduler
from fx_fred.utils.context import ImportContext
from fx_fred.utils.date_range import parse_date
from fx_fred.utils.logger import configure_logging, get_logger

LOGGER = get_logger(__name__)

__all__ = ["build_parser", "main", "parse_args"]

# How often ``run-scheduled`` checks whether pending retries have finished.
POLL_INTERVAL_SECONDS = 1.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fx-fred", description=__doc__)
    parser.add_argument(
        "--db",
        dest="db_url",
        help="Database URL (defaults to FX_FRED_DB_URL or the local SQLite file)",
    )
    parser.add_argument("--log-level", dest="log_level", help="Logging level (defaults to FX_FRED_LOG_LEVEL)")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the tables or collections")

    add = commands.add_parser("add-series", help="Register a currency and its FRED series id")
    add.add_argument("currency_code", help="Three-letter ISO currency code, e.g. EUR")
    add.add_argument("series_id", help="FRED series id, e.g. DEXUSEU")
    add.add_argument("--disabled", dest="enabled", action="store_false", help="Register without scheduling imports")
    add.add_argument("--import", dest="import_now", action="store_true", help="Import the full history right away")

    enable = commands.add_parser("enable", help="Include a currency in scheduled imports")
    enable.add_argument("currency_code")
    disable = commands.add_parser("disable", help="Exclude a currency from scheduled imports")
    disable.add_argument("currency_code")

    commands.add_parser("list-series", help="Show registered currency series")

    run_import = commands.add_parser("import", help="Run a single unlocked import attempt now")
    run_import.add_argument("--series-id", dest="series_id", type=int, help="Only import this series")

    commands.add_parser("run-scheduled", help="Run one locked import now, retrying on failure")
    commands.add_parser("serve", help="Run the daily import scheduler in the foreground")

    rates = commands.add_parser("rates", help="Print stored USD rates for a currency")
    rates.add_argument("currency_code")
    rates.add_argument("--from", dest="start", help="Start date (YYYY-MM-DD)")
    rates.add_argument("--to", dest="end", help="End date (YYYY-MM-DD)")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def _build_facade(args: argparse.Namespace, settings: ImportSettings) -> FxFred:
    return FxFred(args.db_url or settings.database_url, settings=settings)


def _print_result(label: str, result: ImportResult) -> None:
    print(
        f"{label}: new={result.new_records} updated={result.updated_records} "
        f"skipped={result.skipped_records} earliest={result.earliest_date or '-'} "
        f"latest={result.latest_date or '-'}"
    )


def _run_scheduled(fx: FxFred) -> int:
    scheduler = BackgroundScheduler(timezone=timezone.utc)
    scheduler.start()
    try:
        coordinator = fx.build_coordinator(ApschedulerTaskScheduler(scheduler))
        coordinator.run(ImportContext.create("manual"))
        while not coordinator.state.terminal and coordinator.state is not ImportRunState.IDLE:
            time.sleep(POLL_INTERVAL_SECONDS)
        state = coordinator.state
    finally:
        scheduler.shutdown(wait=True)
    if state is ImportRunState.IDLE:
        print("Import lock is held by another instance; nothing to do")
        return 0
    if coordinator.last_result is not None and state is ImportRunState.SUCCESS:
        _print_result("Import succeeded", coordinator.last_result)
        return 0
    print(f"Import finished in state {state.value}", file=sys.stderr)
    return 1


def _serve(fx: FxFred) -> int:
    daily = fx.build_daily_scheduler(BlockingScheduler(timezone=timezone.utc))
    try:
        daily.start()
    except (KeyboardInterrupt, SystemExit):
        LOGGER.info("Stopping the daily import scheduler")
        daily.shutdown(wait=False)
    return 0


def _dispatch(fx: FxFred, args: argparse.Namespace) -> int:
    command = args.command
    if command == "init-db":
        fx.init_db()
        print("Schema ready")
    elif command == "add-series":
        series = fx.add_series(
            args.currency_code,
            args.series_id,
            enabled=args.enabled,
            import_now=args.import_now,
        )
        print(f"Registered {series.currency_code} -> {series.provider_series_id} (id {series.id})")
    elif command in {"enable", "disable"}:
        series = fx.set_series_enabled(args.currency_code, command == "enable")
        print(f"{series.currency_code} {'enabled' if series.enabled else 'disabled'}")
    elif command == "list-series":
        for series in fx.list_series():
            state = "enabled" if series.enabled else "disabled"
            print(f"{series.id}\t{series.currency_code}\t{series.provider_series_id}\t{state}")
    elif command == "import":
        if args.series_id is not None:
            _print_result(f"Series {args.series_id}", fx.import_series(args.series_id))
        else:
            _print_result("Import", fx.import_latest())
    elif command == "run-scheduled":
        return _run_scheduled(fx)
    elif command == "serve":
        return _serve(fx)
    elif command == "rates":
        start = parse_date(args.start) if args.start else None
        end = parse_date(args.end) if args.end else None
        for record in fx.rates(args.currency_code, start, end):
            print(f"{record.rate_date.isoformat()}\t{record.base_currency}/{record.target_currency}\t{record.rate}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = ImportSettings.from_env()
        configure_logging(args.log_level or settings.log_level)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    fx = _build_facade(args, settings)
    try:
        return _dispatch(fx, args)
    except (FxFredError, ValueError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        fx.close()


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
