"""
Command-line interface for pg-table-sync.

Available commands:
- run: Synchronize one table from source to target
- report: Render a result saved by ``run --output``
"""

import logging
import sys

from .commands import build_options, cmd_report, cmd_run, parse_columns
from .credentials import (
    CredentialsError,
    MissingConnectionError,
    configure_logging,
    resolve_connection_strings,
)
from .parser import create_parser

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the pg-table-sync CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(args)

    if args.command == "run":
        try:
            source_dsn, target_dsn = resolve_connection_strings(args)
        except MissingConnectionError as e:
            parser.error(str(e))
        except CredentialsError as e:
            logger.error(str(e))
            sys.exit(1)
        sys.exit(cmd_run(args, source_dsn, target_dsn))
    elif args.command == "report":
        sys.exit(cmd_report(args))
    else:
        parser.print_help()
        sys.exit(2)


__all__ = [
    "main",
    "create_parser",
    "configure_logging",
    "resolve_connection_strings",
    "MissingConnectionError",
    "CredentialsError",
    "cmd_run",
    "cmd_report",
    "build_options",
    "parse_columns",
]


if __name__ == "__main__":
    main()
