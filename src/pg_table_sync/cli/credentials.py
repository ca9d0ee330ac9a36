"""
Connection string resolution and logging setup for the CLI.

Each side's connection string comes from the command-line flag, then the
environment, then (with --use-vault) HashiCorp Vault.
"""

import argparse
import logging
import os

import requests

from pg_table_sync.utils.logging import configure_from_env
from pg_table_sync.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)

ENV_VARS = {
    "source": "TABLE_SYNC_SOURCE",
    "target": "TABLE_SYNC_TARGET",
}


class MissingConnectionError(ValueError):
    """No connection string could be found for a side."""


class CredentialsError(Exception):
    """Vault could not provide a connection string."""


def configure_logging(args: argparse.Namespace) -> None:
    """
    Configure logging from the global flags, falling back to LOG_* variables

    Args:
        args: Parsed command-line arguments
    """
    configure_from_env(
        level="DEBUG" if getattr(args, "verbose", False) else args.log_level,
        log_file=args.log_file,
        json_format=True if args.log_json else None,
    )


def resolve_connection_strings(args: argparse.Namespace) -> tuple[str, str]:
    """
    Resolve the source and target connection strings

    Args:
        args: Parsed ``run`` arguments

    Returns:
        Tuple of (source_dsn, target_dsn)

    Raises:
        MissingConnectionError: If a side has no connection string
        CredentialsError: If Vault was asked for but failed
    """
    resolved = {
        side: getattr(args, side) or os.getenv(env_var)
        for side, env_var in ENV_VARS.items()
    }

    missing = [side for side, dsn in resolved.items() if not dsn]

    if missing and args.use_vault:
        try:
            vault_client = VaultClient()
            for side in missing:
                resolved[side] = vault_client.get_connection_string(side)
        except (ValueError, requests.RequestException) as e:
            raise CredentialsError(f"Failed to fetch connection strings from Vault: {e}") from e
        missing = []

    if missing:
        names = " and ".join(missing)
        flags = ", ".join(f"--{side} or {ENV_VARS[side]}" for side in missing)
        raise MissingConnectionError(f"No {names} connection string provided (use {flags})")

    return resolved["source"], resolved["target"]
