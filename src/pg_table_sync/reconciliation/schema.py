"""
Schema introspection for reconciled tables.

Reads the ordered primary-key columns and the ordered column list of a table
from information_schema.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import psycopg2
from opentelemetry import trace

from pg_table_sync.utils.tracing import trace_operation

from .errors import NoPrimaryKeyError, SchemaError
from .quoting import TableIdentity, quote_identifier

logger = logging.getLogger(__name__)


PRIMARY_KEY_QUERY = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
      AND tc.table_schema = kcu.table_schema
      AND tc.table_name = kcu.table_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = %s AND tc.table_name = %s
    ORDER BY kcu.ordinal_position
"""

COLUMNS_QUERY = """
    SELECT column_name, udt_schema, udt_name, is_generated,
           is_identity, identity_generation
    FROM information_schema.columns
    WHERE table_schema = %s AND table_name = %s
    ORDER BY ordinal_position
"""


@dataclass(frozen=True)
class ColumnInfo:
    """A table column with the type used to cast bound key values."""

    name: str
    type_schema: str
    type_name: str
    is_generated: bool = False
    identity_always: bool = False

    @property
    def cast(self) -> str:
        """Quoted type reference suitable for ``%s::<type>``."""
        return f"{quote_identifier(self.type_schema)}.{quote_identifier(self.type_name)}"


@dataclass
class TableSchema:
    """Primary key and column layout of one table."""

    table: TableIdentity
    primary_key: list[str]
    columns: list[ColumnInfo]
    exclude_columns: frozenset[str] = field(default_factory=frozenset)

    @property
    def column_names(self) -> list[str]:
        """All column names in ordinal order, excluded ones included."""
        return [column.name for column in self.columns]

    @property
    def write_columns(self) -> list[str]:
        """Columns read by the materializer and written by the upsert."""
        return [
            column.name
            for column in self.columns
            if column.name not in self.exclude_columns and not column.is_generated
        ]

    @property
    def update_columns(self) -> list[str]:
        """Write columns that are neither key nor always-identity columns."""
        identity = {column.name for column in self.columns if column.identity_always}
        return [
            name
            for name in self.write_columns
            if name not in self.primary_key and name not in identity
        ]

    @property
    def overrides_identity(self) -> bool:
        """True when a written column is GENERATED ALWAYS AS IDENTITY."""
        write_columns = set(self.write_columns)
        return any(
            column.identity_always for column in self.columns if column.name in write_columns
        )

    @property
    def key_columns(self) -> list[ColumnInfo]:
        """ColumnInfo for each primary-key column, in key order."""
        by_name = {column.name: column for column in self.columns}
        return [by_name[name] for name in self.primary_key]


def _fetch_all(conn: Any, query: str, params: tuple) -> list[tuple]:
    with conn.cursor() as cursor:
        cursor.execute(query, params)
        return cursor.fetchall()


def get_primary_key_columns(conn: Any, table: TableIdentity) -> list[str]:
    """
    Get the ordered primary-key column names of a table.

    Args:
        conn: Database connection
        table: Table identity

    Returns:
        Column names ordered by their position in the key

    Raises:
        SchemaError: If the catalog query fails
    """
    try:
        rows = _fetch_all(conn, PRIMARY_KEY_QUERY, (table.schema, table.name))
    except psycopg2.Error as e:
        raise SchemaError(f"Error getting primary key columns of {table}") from e

    return [row[0] for row in rows]


def get_columns(conn: Any, table: TableIdentity) -> list[ColumnInfo]:
    """
    Get the ordered column list of a table.

    Args:
        conn: Database connection
        table: Table identity

    Returns:
        ColumnInfo list ordered by ordinal position

    Raises:
        SchemaError: If the catalog query fails
    """
    try:
        rows = _fetch_all(conn, COLUMNS_QUERY, (table.schema, table.name))
    except psycopg2.Error as e:
        raise SchemaError(f"Error getting column names of {table}") from e

    return [
        ColumnInfo(
            name=name,
            type_schema=type_schema,
            type_name=type_name,
            is_generated=(is_generated == "ALWAYS"),
            identity_always=(is_identity == "YES" and identity_generation == "ALWAYS"),
        )
        for name, type_schema, type_name, is_generated, is_identity, identity_generation in rows
    ]


def introspect_table(
    conn: Any,
    table: TableIdentity,
    exclude_columns: Iterable[str] = (),
) -> TableSchema:
    """
    Discover the primary key and columns of a table.

    Args:
        conn: Database connection (the source in a reconciliation run)
        table: Table identity
        exclude_columns: Columns never read or written during reconciliation

    Returns:
        TableSchema

    Raises:
        SchemaError: If the catalog cannot be read, the table has no columns,
            or a primary-key column is excluded
        NoPrimaryKeyError: If the table has no primary key
    """
    with trace_operation("introspect_table", kind=trace.SpanKind.CLIENT, table=str(table)):
        pk_columns = get_primary_key_columns(conn, table)
        if not pk_columns:
            raise NoPrimaryKeyError(f"Table {table} has no primary key")

        columns = get_columns(conn, table)
        if not columns:
            raise SchemaError(f"Table {table} has no columns or does not exist")

        excluded = frozenset(exclude_columns)
        known = {column.name for column in columns}

        unknown = sorted(excluded - known)
        if unknown:
            logger.warning(f"Ignoring unknown excluded columns on {table}: {unknown}")

        excluded_pk = [name for name in pk_columns if name in excluded]
        if excluded_pk:
            raise SchemaError(
                f"Primary key columns cannot be excluded on {table}: {excluded_pk}"
            )

        generated = [column.name for column in columns if column.is_generated]
        if generated:
            logger.debug(f"Generated columns skipped on write: {generated}")

        schema = TableSchema(
            table=table,
            primary_key=pk_columns,
            columns=columns,
            exclude_columns=excluded & known,
        )

        logger.debug(f"Primary key columns: {pk_columns}")
        logger.debug(f"Write columns: {schema.write_columns}")

        return schema
