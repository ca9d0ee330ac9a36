"""
Transactional patch application on the target.

All upserts and deletes of a run execute inside one transaction with
constraint checks deferred. The transaction is committed only when every
statement succeeded and the run is not a dry run; otherwise it is rolled back.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import psycopg2
from opentelemetry import trace

from pg_table_sync.utils.tracing import add_span_attributes, trace_operation

from .diff import DiffResult
from .errors import ApplyError, TransactionError
from .fingerprint import RowKey, key_params
from .materialize import build_where_clause
from .quoting import join_identifiers, quote_identifier
from .schema import TableSchema

logger = logging.getLogger(__name__)


@dataclass
class ApplyOutcome:
    """Counts of statements executed in the target transaction."""

    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    committed: bool = False


def build_upsert_query(schema: TableSchema) -> str:
    """
    Build the INSERT ... ON CONFLICT statement for the write columns.

    Every non-key write column is overwritten with the incoming value on
    conflict. Tables made only of key columns use DO NOTHING. Source values of
    GENERATED ALWAYS identity columns are written with OVERRIDING SYSTEM VALUE.
    """
    columns = schema.write_columns
    placeholders = ", ".join(["%s"] * len(columns))
    overriding = "OVERRIDING SYSTEM VALUE " if schema.overrides_identity else ""

    update_set = ", ".join(
        f"{quote_identifier(col)} = EXCLUDED.{quote_identifier(col)}"
        for col in schema.update_columns
    )
    conflict_action = f"DO UPDATE SET {update_set}" if update_set else "DO NOTHING"

    return (
        f"INSERT INTO {schema.table.quoted} ({join_identifiers(columns)}) "
        f"{overriding}VALUES ({placeholders}) "
        f"ON CONFLICT ({join_identifiers(schema.primary_key)}) {conflict_action}"
    )


def build_delete_query(schema: TableSchema) -> str:
    """Build the DELETE-by-primary-key statement."""
    return (
        f"DELETE FROM {schema.table.quoted} "
        f"WHERE {build_where_clause(schema.primary_key)}"
    )


class TransactionalApplier:
    """Applies a diff to the target inside a single transaction."""

    def __init__(self, conn: Any, schema: TableSchema, dry_run: bool = False):
        """
        Initialize the applier.

        Args:
            conn: Target database connection
            schema: Table schema
            dry_run: Roll back after executing every statement
        """
        self.conn = conn
        self.schema = schema
        self.dry_run = dry_run

        self.upsert_query = build_upsert_query(schema)
        self.delete_query = build_delete_query(schema)

    def apply(self, diff: DiffResult, rows: Iterable[tuple[RowKey, tuple]]) -> ApplyOutcome:
        """
        Execute the patch.

        Args:
            diff: Classified keys
            rows: Materialized (key, row) pairs for diff.keys_to_write

        Returns:
            ApplyOutcome

        Raises:
            ApplyError: If an upsert or delete fails (the transaction is rolled back)
            TransactionError: If begin, commit or rollback fails
            MaterializationError, QueryError: Propagated from ``rows``
                (the transaction is rolled back)
        """
        with trace_operation(
            "apply_patch",
            kind=trace.SpanKind.CLIENT,
            table=str(self.schema.table),
            dry_run=self.dry_run,
        ):
            restore_autocommit = self._begin()
            outcome = ApplyOutcome()

            try:
                with self.conn.cursor() as cursor:
                    self._upsert_rows(cursor, diff, rows, outcome)
                    self._delete_rows(cursor, diff, outcome)
            except BaseException:
                self._rollback_after_error()
                self._restore(restore_autocommit)
                raise

            try:
                if self.dry_run:
                    self._rollback()
                    logger.info("Dry run: all statements succeeded, changes rolled back")
                else:
                    self._commit()
                    outcome.committed = True
            finally:
                self._restore(restore_autocommit)

            add_span_attributes(
                inserted=outcome.inserted,
                updated=outcome.updated,
                deleted=outcome.deleted,
                committed=outcome.committed,
            )

            return outcome

    def _upsert_rows(
        self,
        cursor: Any,
        diff: DiffResult,
        rows: Iterable[tuple[RowKey, tuple]],
        outcome: ApplyOutcome,
    ) -> None:
        logger.debug(f"Upsert query: {self.upsert_query}")

        for key, row in rows:
            try:
                cursor.execute(self.upsert_query, row)
            except psycopg2.Error as e:
                raise ApplyError(
                    f"Error upserting row {key} into target", operation="upsert", key=key
                ) from e

            if key in diff.to_insert:
                outcome.inserted += 1
            else:
                outcome.updated += 1

    def _delete_rows(self, cursor: Any, diff: DiffResult, outcome: ApplyOutcome) -> None:
        logger.debug(f"Delete query: {self.delete_query}")

        for key in diff.to_delete:
            try:
                cursor.execute(self.delete_query, key_params([key]))
            except psycopg2.Error as e:
                raise ApplyError(
                    f"Error deleting row {key} from target", operation="delete", key=key
                ) from e

            if cursor.rowcount == 0:
                logger.debug(f"Row {key} was already gone from target")
            outcome.deleted += 1

    def _begin(self) -> bool:
        """Open the transaction; returns True when autocommit must be restored."""
        restore_autocommit = bool(self.conn.autocommit)

        try:
            if restore_autocommit:
                self.conn.autocommit = False
            with self.conn.cursor() as cursor:
                cursor.execute("SET CONSTRAINTS ALL DEFERRED")
        except psycopg2.Error as e:
            self._rollback_after_error()
            self._restore(restore_autocommit)
            raise TransactionError("Error beginning transaction on target") from e

        logger.debug("Target transaction started with constraints deferred")
        return restore_autocommit

    def _commit(self) -> None:
        try:
            self.conn.commit()
        except psycopg2.Error as e:
            raise TransactionError("Error committing transaction") from e
        logger.info("Target transaction committed")

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            raise TransactionError("Error rolling back transaction") from e

    def _rollback_after_error(self) -> None:
        # Logged only; the triggering exception is re-raised by the caller.
        try:
            self.conn.rollback()
            logger.warning("Target transaction rolled back")
        except psycopg2.Error as e:
            logger.error(f"Rollback after failure also failed: {e}")

    def _restore(self, restore_autocommit: bool) -> None:
        if restore_autocommit:
            try:
                self.conn.autocommit = True
            except psycopg2.Error as e:
                logger.error(f"Could not restore autocommit on target: {e}")
