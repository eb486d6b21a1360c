#!/usr/bin/env python3
"""
TFS hours CLI - database setup, server, offline ingest and reports.

Commands:
    init-db                 Converge the schema (creates the DB if missing)
    serve                   Run the HTTP API
    ingest FILE             Ingest a poller batch from a JSON file ('-' = stdin)
    summary --from --to     Print the delta summary (or CSV with --csv)
"""

import argparse
import json
import logging
import sys
from dataclasses import replace

from tfs_hours import db
from tfs_hours.config import load_settings
from tfs_hours.csv_export import format_hours, render_summary_csv
from tfs_hours.deltas import Filters, compute_delta_report
from tfs_hours.errors import HoursError
from tfs_hours.ingest import ingest_batch, parse_batch
from tfs_hours.observability import configure_logging
from tfs_hours.report_range import BucketUnit, isoformat_utc, resolve_date_range

logger = logging.getLogger(__name__)


def print_header(text: str):
    """Print a section header."""
    print(f"\n{'═' * 50}")
    print(f"  {text}")
    print(f"{'═' * 50}")


def print_table(headers: list, rows: list, widths: list = None):
    """Print a simple table."""
    if not widths:
        widths = [max(len(str(row[i])) for row in [headers] + rows) for i in range(len(headers))]

    header_str = " │ ".join(str(h).ljust(w) for h, w in zip(headers, widths))
    print(header_str)
    print("─" * len(header_str))

    for row in rows:
        print(" │ ".join(str(c)[:w].ljust(w) for c, w in zip(row, widths)))


# =============================================================================
# Commands
# =============================================================================


def cmd_init_db(args, settings) -> int:
    """Converge the schema."""
    results = db.run_startup_migrations(settings.db_path)
    print_header("DATABASE")
    print(f"Path:            {settings.db_path}")
    print(f"Previous version: {results.get('previous_version')}")
    print(f"Tables created:  {', '.join(results.get('tables_created', [])) or '-'}")
    print(f"Columns added:   {', '.join(results.get('columns_added', [])) or '-'}")
    for error in results.get("errors", []):
        print(f"ERROR: {error}")
    return 1 if results.get("errors") else 0


def cmd_serve(args, settings) -> int:
    """Run the API with uvicorn."""
    from api.server import main as serve_main

    if args.host:
        settings = replace(settings, host=args.host)
    if args.port:
        settings = replace(settings, port=args.port)
    serve_main(settings)
    return 0


def cmd_ingest(args, settings) -> int:
    """Ingest one batch file, exactly as the HTTP endpoint would."""
    try:
        if args.file == "-":
            payload = json.load(sys.stdin)
        else:
            with open(args.file, encoding="utf-8") as f:
                payload = json.load(f)
    except OSError as e:
        logger.error("Cannot read batch %s: %s", args.file, e)
        print(f"Error: cannot read {args.file}: {e.strerror or e}", file=sys.stderr)
        return 1
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error("Batch %s is not valid JSON: %s", args.file, e)
        print(f"Error: {args.file} is not valid JSON: {e}", file=sys.stderr)
        return 1

    batch = parse_batch(payload)
    db.run_startup_migrations(settings.db_path)
    with db.get_connection(settings.db_path) as conn:
        result = ingest_batch(conn, batch, chunk_size=settings.ingest_chunk_size)

    print(f"Run {result.run_id} at {isoformat_utc(result.run_at)}: {result.count} rows")
    return 0


def cmd_summary(args, settings) -> int:
    """Print the delta summary for a date range."""
    tz = settings.report_tz
    date_range = resolve_date_range(args.from_date, args.to_date, tz)
    if date_range is None:
        print("from and to must be valid dates (YYYY-MM-DD)", file=sys.stderr)
        return 2
    filters = Filters.parse(args.upn, args.account_code)
    unit = BucketUnit.parse(args.bucket)

    with db.get_connection(settings.db_path) as conn:
        rows = compute_delta_report(conn, date_range, unit, filters, tz)

    if args.csv:
        sys.stdout.write(render_summary_csv(rows))
        return 0

    print_header(f"HOURS {date_range.from_date} → {date_range.to_date} ({unit.value}, {tz.label})")
    if not rows:
        print("No hours logged in range.")
        return 0
    print_table(
        ["Bucket", "Assignee", "UPN", "Account", "Hours"],
        [
            [
                r.bucket.isoformat(),
                r.assigned_to or "-",
                r.assigned_to_upn or "-",
                "-" if r.account_code is None else r.account_code,
                format_hours(r.hours),
            ]
            for r in rows
        ],
    )
    total = sum(r.hours for r in rows)
    print(f"\nTotal: {format_hours(round(total, 6))} h")
    return 0


# =============================================================================
# Entry point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tfs-hours", description="TFS task hours ledger")
    sub = p.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init-db", help="Create or migrate the database")
    init.set_defaults(func=cmd_init_db)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    ingest = sub.add_parser("ingest", help="Ingest a batch JSON file")
    ingest.add_argument("file", help="Path to batch JSON, or '-' for stdin")
    ingest.set_defaults(func=cmd_ingest)

    summary = sub.add_parser("summary", help="Print hour deltas for a date range")
    summary.add_argument("--from", dest="from_date", required=True, help="YYYY-MM-DD, inclusive")
    summary.add_argument("--to", dest="to_date", required=True, help="YYYY-MM-DD, inclusive")
    summary.add_argument("--bucket", default="day", help="day, week or month")
    summary.add_argument("--upn", default=None, help="Assignee UPN substring")
    summary.add_argument("--account-code", default=None)
    summary.add_argument("--csv", action="store_true", help="Write CSV to stdout")
    summary.set_defaults(func=cmd_summary)
    return p


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
        if args.command != "serve":
            configure_logging(settings.log_level, settings.log_json)
        return args.func(args, settings)
    except HoursError as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
