"""
Command-line argument parser configuration.

Defines the ``run`` and ``report`` commands of the pg-table-sync CLI.
"""

import argparse

from pg_table_sync import __version__


def positive_int(value: str) -> int:
    """argparse type for integers >= 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="pg-table-sync",
        description="Make a PostgreSQL target table identical to its source table",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Synchronize a table between two databases
  pg-table-sync run --source "dbname=prod" --target "dbname=replica" --table public.orders

  # Validate the patch without committing it
  pg-table-sync run --table orders --dry-run

  # Only reconcile rows matching a predicate (never deletes outside it)
  pg-table-sync run --table orders --where "status = 'pending'"

  # Rewrite every shared row, skipping a column, with credentials from Vault
  pg-table-sync run --use-vault --table orders --force --exclude-columns updated_at

  # Save the result and render it later
  pg-table-sync run --table orders --output result.json
  pg-table-sync report --input result.json
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON lines",
    )
    parser.add_argument(
        "--log-file",
        help="Also write logs to a rotating file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ========== Run command ==========
    run_parser = subparsers.add_parser("run", help="Synchronize one table")
    run_parser.add_argument(
        "--source",
        help="Source connection string (default: TABLE_SYNC_SOURCE)",
    )
    run_parser.add_argument(
        "--target",
        help="Target connection string (default: TABLE_SYNC_TARGET)",
    )
    run_parser.add_argument(
        "--table",
        required=True,
        help="Table to synchronize, as [schema.]table",
    )
    run_parser.add_argument(
        "--where",
        help="SQL predicate restricting the rows considered on the source",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Execute every statement, then roll back",
    )
    run_parser.add_argument(
        "--force",
        action="store_true",
        help="Rewrite every row present on both sides even if unchanged",
    )
    run_parser.add_argument(
        "--exclude-columns",
        default="",
        help="Comma-separated columns never written to the target",
    )
    run_parser.add_argument(
        "--batch-size",
        type=positive_int,
        default=1000,
        help="Rows per fetch and keys per query (default: 1000)",
    )
    run_parser.add_argument(
        "--use-vault",
        action="store_true",
        help="Fetch connection strings from HashiCorp Vault",
    )
    run_parser.add_argument(
        "--output",
        help="Write the result as JSON to this file",
    )
    run_parser.add_argument(
        "--format",
        choices=["console", "json"],
        default="console",
        help="Result output format on stdout (default: console)",
    )
    run_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Shorthand for --log-level DEBUG",
    )
    run_parser.add_argument(
        "--otlp-endpoint",
        help="Export traces to this OTLP collector (e.g. localhost:4317)",
    )
    run_parser.add_argument(
        "--pushgateway",
        help="Push run metrics to this Prometheus Pushgateway (e.g. localhost:9091)",
    )

    # ========== Report command ==========
    report_parser = subparsers.add_parser("report", help="Render a saved run result")
    report_parser.add_argument(
        "--input",
        required=True,
        help="JSON result file written by run --output",
    )

    return parser
