"""
CLI command implementations.

- run: synchronize one table
- report: render a saved run result
"""

import argparse
import json
import logging

import psycopg2

from pg_table_sync.reconciliation import SyncOptions, TableSyncError, make_table_same
from pg_table_sync.report import export_result_json, format_result_console, load_result
from pg_table_sync.utils.connections import close_quietly, connect_source, connect_target
from pg_table_sync.utils.metrics import ReconciliationMetrics, push_metrics
from pg_table_sync.utils.tracing import initialize_tracing, shutdown_tracing

logger = logging.getLogger(__name__)


def parse_columns(value: str | None) -> frozenset[str]:
    """Split a comma-separated column list, dropping blanks."""
    if not value:
        return frozenset()
    return frozenset(column.strip() for column in value.split(",") if column.strip())


def build_options(args: argparse.Namespace) -> SyncOptions:
    """Build engine options from parsed ``run`` arguments."""
    return SyncOptions(
        table=args.table,
        where=args.where,
        dry_run=args.dry_run,
        force=args.force,
        exclude_columns=parse_columns(args.exclude_columns),
        batch_size=args.batch_size,
    )


def cmd_run(args: argparse.Namespace, source_dsn: str, target_dsn: str) -> int:
    """
    Run one synchronization

    Args:
        args: Parsed command-line arguments
        source_dsn: Source connection string
        target_dsn: Target connection string

    Returns:
        Process exit code
    """
    options = build_options(args)
    metrics = ReconciliationMetrics()

    if args.otlp_endpoint:
        initialize_tracing(otlp_endpoint=args.otlp_endpoint)

    logger.info(f"Starting synchronization of {options.table}")

    source_conn = None
    target_conn = None
    try:
        source_conn = connect_source(source_dsn)
        target_conn = connect_target(target_dsn)

        result = make_table_same(source_conn, target_conn, options, metrics=metrics)

    except TableSyncError as e:
        logger.error(f"Synchronization failed during {e.stage}: {e}")
        return 1
    except psycopg2.Error as e:
        logger.error(f"Could not connect to database: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid options: {e}")
        return 1
    finally:
        close_quietly(source_conn)
        close_quietly(target_conn)
        if args.pushgateway:
            _push(args.pushgateway)
        if args.otlp_endpoint:
            shutdown_tracing()

    result_dict = result.to_dict()

    if args.output:
        export_result_json(result_dict, args.output)
        logger.info(f"Result written to {args.output}")

    if args.format == "json":
        print(json.dumps(result_dict, indent=2))
    else:
        print(format_result_console(result_dict))

    return 0


def _push(gateway: str) -> None:
    try:
        push_metrics(gateway)
    except OSError as e:
        logger.warning(f"Failed to push metrics to {gateway}: {e}")


def cmd_report(args: argparse.Namespace) -> int:
    """
    Render a saved run result to the console

    Args:
        args: Parsed command-line arguments

    Returns:
        Process exit code
    """
    try:
        result = load_result(args.input)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load result from {args.input}: {e}")
        return 1

    print(format_result_console(result))
    return 0
