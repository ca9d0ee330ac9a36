"""
Row materialization from the source.

Fingerprinting only carries key and hash, so rows that need writing are
re-read by primary key just before they are applied.
"""

import logging
from collections.abc import Iterable, Iterator
from typing import Any

import psycopg2
from opentelemetry import trace

from pg_table_sync.utils.tracing import trace_operation

from .errors import MaterializationError, QueryError
from .fingerprint import RowKey, build_key_filter, chunked, key_params, make_key
from .quoting import join_identifiers, quote_identifier
from .schema import TableSchema

logger = logging.getLogger(__name__)


def build_where_clause(pk_columns: list[str]) -> str:
    """Build ``"a" = %s AND "b" = %s`` for the given key columns."""
    return " AND ".join(f"{quote_identifier(col)} = %s" for col in pk_columns)


class RowMaterializer:
    """Re-reads full rows from the source by primary key."""

    def __init__(self, conn: Any, schema: TableSchema, batch_size: int = 1000):
        """
        Initialize the materializer.

        Args:
            conn: Source database connection
            schema: Table schema
            batch_size: Keys per query in fetch_many
        """
        self.conn = conn
        self.schema = schema
        self.batch_size = batch_size

        self.select_columns = join_identifiers(schema.write_columns)

    def fetch(self, key: RowKey) -> tuple:
        """
        Fetch the write columns of one row.

        Args:
            key: Primary-key tuple

        Returns:
            Column values in write-column order

        Raises:
            MaterializationError: If the row no longer exists in the source
            QueryError: If the read fails
        """
        query = (
            f"SELECT {self.select_columns} FROM {self.schema.table.quoted} "
            f"WHERE {build_where_clause(self.schema.primary_key)}"
        )

        try:
            with self.conn.cursor() as cursor:
                cursor.execute(query, key_params([key]))
                row = cursor.fetchone()
        except psycopg2.Error as e:
            raise QueryError(f"Error scanning source row data for key {key}", side="source") from e

        if row is None:
            raise MaterializationError(
                f"Source row {key} of {self.schema.table} disappeared before it could be applied",
                key=key,
            )

        return tuple(row)

    def fetch_many(self, keys: Iterable[RowKey]) -> Iterator[tuple[RowKey, tuple]]:
        """
        Fetch rows for many keys, ``batch_size`` keys per query.

        Args:
            keys: Primary-key tuples

        Yields:
            (key, row) pairs; rows are in write-column order

        Raises:
            MaterializationError: If any key is missing from the source
            QueryError: If a read fails
        """
        key_length = len(self.schema.primary_key)
        base_query = (
            f"SELECT {join_identifiers(self.schema.primary_key)}, {self.select_columns} "
            f"FROM {self.schema.table.quoted} WHERE "
        )

        for chunk in chunked(keys, self.batch_size):
            query = base_query + build_key_filter(self.schema, len(chunk))
            params = key_params(chunk)

            with trace_operation(
                "materialize_rows",
                kind=trace.SpanKind.CLIENT,
                table=str(self.schema.table),
                keys=len(chunk),
            ):
                try:
                    with self.conn.cursor() as cursor:
                        cursor.execute(query, params)
                        rows = cursor.fetchall()
                except psycopg2.Error as e:
                    raise QueryError(
                        f"Error scanning source row data of {self.schema.table}", side="source"
                    ) from e

            found = {make_key(row[:key_length]): tuple(row[key_length:]) for row in rows}
            logger.debug(f"Materialized {len(found)} of {len(chunk)} rows from source")

            missing = [key for key in chunk if key not in found]
            if missing:
                raise MaterializationError(
                    f"{len(missing)} source row(s) of {self.schema.table} disappeared "
                    f"before they could be applied, first: {missing[0]}",
                    key=missing[0],
                )

            for key in chunk:
                yield key, found[key]
