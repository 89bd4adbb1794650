#!/usr/bin/env python3
"""
Operator console for the inventory closing engine.

Runs closings, recalculations and status queries against the database named
by the active configuration (closing_config/defaults.yaml, CLOSING_CONFIG_PATH
and CLOSING_* environment overrides).

Usage:
    python3 scripts/closing_cli.py init-db
    python3 scripts/closing_cli.py close-day ENTITY FACILITY_TYPE 2024-03-05
    python3 scripts/closing_cli.py close-day-all ENTITY 2024-03-05
    python3 scripts/closing_cli.py close-month ENTITY FACILITY_TYPE 2024 3
    python3 scripts/closing_cli.py close-month-all ENTITY 2024 3
    python3 scripts/closing_cli.py recalculate ENTITY FACILITY_TYPE 2024-03-05
    python3 scripts/closing_cli.py recalculate-all ENTITY 2024-03-05
    python3 scripts/closing_cli.py status ENTITY 2024 3
    python3 scripts/closing_cli.py position ENTITY FACILITY_TYPE

Every write command takes --actor (a UUID); a fixed operator id is used
when it is omitted.  Exit status is 1 when the command failed or any key
of a fan-out failed.
"""

import argparse
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from closing_config import ConfigError, get_active_config
from closing_config.bridges import build_runtime
from closing_kernel.db.engine import create_tables, session_scope
from closing_kernel.exceptions import ClosingKernelError
from closing_kernel.logging_config import configure_logging
from closing_kernel.selectors.closing_selector import ClosingSelector
from closing_services import FanOutReport, RecalcReport, RecalcStatus

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
OPERATOR_ACTOR_ID = UUID("00000000-0000-4000-8000-00000000c105")


# =============================================================================
# Output helpers
# =============================================================================

def hline(char: str = "=", width: int = 72) -> str:
    return char * width


def banner(title: str) -> None:
    print(hline())
    print(f"  {title}")
    print(hline())


def print_record(info) -> None:
    print(
        f"  {info.facility_type_code:<20} {info.period_code:<10} "
        f"prev={info.previous_quantity:>8} in={info.inbound_quantity:>8} "
        f"out={info.outbound_quantity:>8} close={info.closing_quantity:>8} "
        f"v{info.version}"
    )


def print_fan_out(report: FanOutReport) -> None:
    banner(f"{report.granularity.value.upper()} CLOSING {report.period_code} -- {report.entity_id}")
    print(f"  status:         {report.status.value}")
    print(f"  correlation_id: {report.correlation_id}")
    print(
        f"  closed={report.closed_count} already_closed={report.already_closed_count} "
        f"failed={report.failed_count} not_attempted={report.not_attempted_count}"
    )
    print(hline("-"))
    for outcome in report.outcomes:
        line = f"  {outcome.facility_type_code:<20} {outcome.status.value:<15}"
        if outcome.record is not None:
            line += f" close={outcome.record.closing_quantity}"
        if outcome.error_code:
            line += f" {outcome.error_code}: {outcome.error_message}"
        print(line)
    if report.retry_keys:
        print(hline("-"))
        print(f"  Retry needed for: {', '.join(report.retry_keys)}")


def print_recalc(report: RecalcReport) -> None:
    banner(
        f"RECALCULATION {report.entity_id}/{report.facility_type_code} "
        f"from {report.from_date}"
    )
    print(f"  status:  {report.status.value}")
    print(f"  run_id:  {report.run_id}")
    if report.resumed_from:
        print(f"  resumed: {report.resumed_from}")
    print(f"  {report.message}")
    print(hline("-"))
    for entry in report.entries:
        marker = "*" if entry.changed else " "
        print(
            f" {marker}{entry.period_code:<10} {entry.old_closing_quantity:>8} -> "
            f"{entry.new_closing_quantity:>8}  v{entry.version_before}->v{entry.version_after}"
        )


# =============================================================================
# Commands
# =============================================================================

def cmd_init_db(runtime, args) -> int:
    create_tables(runtime.engine)
    print(f"  Tables created on {runtime.engine.url.render_as_string(hide_password=True)}")
    return 0


def cmd_close_day(runtime, args) -> int:
    result = runtime.closing.close_day(
        args.entity_id, args.facility_type_code, args.date, args.actor
    )
    print(f"  {result.status.value}")
    print_record(result.record)
    return 0


def cmd_close_day_all(runtime, args) -> int:
    report = runtime.closing.close_day_all(args.entity_id, args.date, args.actor)
    print_fan_out(report)
    return 1 if report.failed_count else 0


def cmd_close_month(runtime, args) -> int:
    result = runtime.closing.close_month(
        args.entity_id, args.facility_type_code, args.year, args.month, args.actor
    )
    print(f"  {result.status.value}")
    print_record(result.record)
    return 0


def cmd_close_month_all(runtime, args) -> int:
    report = runtime.closing.close_month_all(
        args.entity_id, args.year, args.month, args.actor
    )
    print_fan_out(report)
    return 1 if report.failed_count else 0


def cmd_recalculate(runtime, args) -> int:
    report = runtime.recalculation.recalculate(
        args.entity_id, args.facility_type_code, args.date, args.actor
    )
    print_recalc(report)
    return 1 if report.status == RecalcStatus.ABORTED else 0


def cmd_recalculate_all(runtime, args) -> int:
    batch = runtime.recalculation.recalculate_all(args.entity_id, args.date, args.actor)
    for report in batch.reports:
        print_recalc(report)
    for failure in batch.failures:
        print(f"  FAILED {failure.facility_type_code}: {failure.error_code} {failure.error_message}")
    print(hline())
    print(f"  batch status: {batch.status.value}")
    aborted = any(r.status == RecalcStatus.ABORTED for r in batch.reports)
    return 1 if batch.failures or aborted else 0


def cmd_status(runtime, args) -> int:
    with session_scope(runtime.session_factory) as session:
        selector = ClosingSelector(session, clock=runtime.clock, actors=runtime.actors)
        calendar = selector.daily_closing_calendar(args.entity_id, args.year, args.month)
        monthly = selector.monthly_status(args.entity_id, args.year, args.month)

    banner(f"CLOSING CALENDAR {args.year:04d}-{args.month:02d} -- {args.entity_id}")
    for day in calendar:
        if day.total_keys == 0:
            continue
        mark = "closed" if day.is_closed else "open"
        by = day.closed_by_name or (str(day.closed_by_id) if day.closed_by_id else "")
        print(
            f"  {day.closing_date}  {mark:<7} {day.closed_keys}/{day.total_keys}  {by}"
        )
    print(hline("-"))
    if monthly:
        print("  Monthly closings:")
        for info in monthly:
            print_record(info)
    else:
        print("  Month not closed.")
    return 0


def cmd_position(runtime, args) -> int:
    with session_scope(runtime.session_factory) as session:
        position = ClosingSelector(session, clock=runtime.clock).current_position(
            args.entity_id, args.facility_type_code
        )
    print(f"  as of:          {position.as_of}")
    print(f"  latest closing: {position.latest_closing_date or '-'}")
    print(f"  base:           {position.base_quantity}")
    print(f"  recent in/out:  {position.recent_inbound} / {position.recent_outbound}")
    print(f"  current:        {position.current_quantity}")
    return 0


# =============================================================================
# Main
# =============================================================================

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inventory closing operator console.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Config file (default: CLOSING_CONFIG_PATH or packaged defaults)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def add(name: str, handler, help_text: str, *, write: bool = True):
        p = sub.add_parser(name, help=help_text)
        p.set_defaults(handler=handler)
        if write:
            p.add_argument(
                "--actor", type=UUID, default=OPERATOR_ACTOR_ID,
                help="Actor id recorded on the closing",
            )
        return p

    add("init-db", cmd_init_db, "Create the closing tables", write=False)

    p = add("close-day", cmd_close_day, "Close one facility type for one day")
    p.add_argument("entity_id")
    p.add_argument("facility_type_code")
    p.add_argument("date", type=date.fromisoformat)

    p = add("close-day-all", cmd_close_day_all, "Close every facility type due on a day")
    p.add_argument("entity_id")
    p.add_argument("date", type=date.fromisoformat)

    p = add("close-month", cmd_close_month, "Close one facility type for one month")
    p.add_argument("entity_id")
    p.add_argument("facility_type_code")
    p.add_argument("year", type=int)
    p.add_argument("month", type=int)

    p = add("close-month-all", cmd_close_month_all, "Close every facility type for a month")
    p.add_argument("entity_id")
    p.add_argument("year", type=int)
    p.add_argument("month", type=int)

    p = add("recalculate", cmd_recalculate, "Recalculate one key from a closed day")
    p.add_argument("entity_id")
    p.add_argument("facility_type_code")
    p.add_argument("date", type=date.fromisoformat)

    p = add("recalculate-all", cmd_recalculate_all, "Recalculate every key closed on a day")
    p.add_argument("entity_id")
    p.add_argument("date", type=date.fromisoformat)

    p = add("status", cmd_status, "Show the closing calendar of a month", write=False)
    p.add_argument("entity_id")
    p.add_argument("year", type=int)
    p.add_argument("month", type=int)

    p = add("position", cmd_position, "Show the live inventory position", write=False)
    p.add_argument("entity_id")
    p.add_argument("facility_type_code")

    return parser


def main() -> int:
    args = _build_parser().parse_args()

    try:
        config = get_active_config(config_path=args.config)
    except ConfigError as exc:
        print("CONFIGURATION INVALID:", file=sys.stderr)
        for err in exc.errors:
            print(f"  ERROR: {err}", file=sys.stderr)
        return 1

    configure_logging(level=config.log_level_number)
    runtime = build_runtime(config)

    try:
        return args.handler(runtime, args)
    except ClosingKernelError as exc:
        print(f"  {exc.code}: {exc}", file=sys.stderr)
        return 1
    finally:
        runtime.engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
