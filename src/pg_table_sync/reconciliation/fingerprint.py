"""
Row fingerprint extraction.

A fingerprint maps each row's primary-key tuple to an md5 digest of the row's
JSON serialization. The digest is computed by the server with the same SQL
expression on both sides, so equal row content yields equal hashes.
"""

import logging
from collections.abc import Iterable, Iterator
from itertools import islice
from typing import Any

import psycopg2
from opentelemetry import trace

from pg_table_sync.utils.tracing import trace_operation

from .errors import QueryError
from .quoting import quote_identifier
from .schema import TableSchema

logger = logging.getLogger(__name__)

RowKey = tuple[Any, ...]

ROW_HASH_EXPRESSION = "md5(row_to_json(t)::text)"

CURSOR_NAME = "pg_table_sync_fingerprint"


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


def make_key(values: Iterable[Any]) -> RowKey:
    """
    Build a hashable RowKey from key column values.

    psycopg2 returns arrays as lists; they are stored as nested tuples.
    """
    return tuple(_freeze(value) for value in values)


def key_params(keys: Iterable[RowKey]) -> list[Any]:
    """Flatten keys into bind parameters, arrays back as lists."""
    return [_thaw(value) for key in keys for value in key]


def chunked(items: Iterable[Any], size: int) -> Iterator[list[Any]]:
    """Yield lists of at most ``size`` items."""
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def build_key_filter(schema: TableSchema, key_count: int, alias: str | None = None) -> str:
    """
    Build a ``(pk...) IN (VALUES ...)`` predicate for ``key_count`` keys.

    Each placeholder is cast to the key column's catalog type so composite
    keys of any type compare column-by-column.

    Args:
        schema: Table schema
        key_count: Number of key tuples that will be bound
        alias: Optional table alias to qualify key columns with

    Returns:
        SQL predicate with ``key_count * len(primary_key)`` placeholders
    """
    prefix = f"{alias}." if alias else ""
    columns = ", ".join(prefix + quote_identifier(name) for name in schema.primary_key)

    row_template = "(" + ", ".join(f"%s::{column.cast}" for column in schema.key_columns) + ")"
    values = ", ".join([row_template] * key_count)

    return f"({columns}) IN (VALUES {values})"


def build_fingerprint_query(schema: TableSchema, where: str | None = None) -> str:
    """
    Build the fingerprint projection for a table.

    Args:
        schema: Table schema
        where: Optional raw SQL predicate appended as the WHERE clause

    Returns:
        SQL selecting the key columns and the row hash
    """
    key_columns = ", ".join("t." + quote_identifier(name) for name in schema.primary_key)
    query = (
        f"SELECT {key_columns}, {ROW_HASH_EXPRESSION} AS row_hash "
        f"FROM {schema.table.quoted} t"
    )
    if where:
        query += f" WHERE ({where})"
    return query


def _collect(rows: Iterable[tuple], key_length: int, into: dict[RowKey, str]) -> None:
    for row in rows:
        into[make_key(row[:key_length])] = row[key_length]


def _stream_cursor(conn: Any):
    # Named cursors outside a transaction must be declared WITH HOLD.
    return conn.cursor(name=CURSOR_NAME, withhold=bool(getattr(conn, "autocommit", False)))


def fingerprint_table(
    conn: Any,
    schema: TableSchema,
    where: str | None = None,
    keys: Iterable[RowKey] | None = None,
    batch_size: int = 1000,
    side: str = "source",
) -> dict[RowKey, str]:
    """
    Compute the fingerprint mapping of a table.

    Args:
        conn: Database connection
        schema: Table schema (introspected once for the run)
        where: Optional trusted SQL predicate, used verbatim
        keys: When given, only rows whose primary key is in this set are read
        batch_size: Rows per network round trip / keys per restricted query
        side: "source" or "target", used in logs and errors

    Returns:
        Mapping of primary-key tuple to row hash

    Raises:
        QueryError: If a read query fails
    """
    with trace_operation(
        "fingerprint_table",
        kind=trace.SpanKind.CLIENT,
        table=str(schema.table),
        side=side,
        restricted=keys is not None,
    ) as span:
        fingerprints: dict[RowKey, str] = {}
        key_length = len(schema.primary_key)

        try:
            if keys is None:
                query = build_fingerprint_query(schema, where)
                logger.debug(f"{side.capitalize()} query: {query}")
                with _stream_cursor(conn) as cursor:
                    cursor.itersize = batch_size
                    cursor.execute(query)
                    _collect(cursor, key_length, fingerprints)
            else:
                # Literal % in the predicate must survive parameter binding.
                base_query = build_fingerprint_query(
                    schema, where.replace("%", "%%") if where else None
                )
                joiner = " AND " if where else " WHERE "
                logger.debug(f"{side.capitalize()} query: {base_query}{joiner}<key set>")
                for chunk in chunked(keys, batch_size):
                    query = base_query + joiner + build_key_filter(schema, len(chunk), alias="t")
                    params = key_params(chunk)
                    with conn.cursor() as cursor:
                        cursor.execute(query, params)
                        _collect(cursor.fetchall(), key_length, fingerprints)
        except psycopg2.Error as e:
            raise QueryError(f"Error querying {side} table {schema.table}", side=side) from e

        span.set_attribute("rows", len(fingerprints))
        logger.info(f"Fetched {len(fingerprints)} rows from {side}")

        return fingerprints
