"""
Unit tests for transactional patch application.

Covers statement construction, commit, dry-run rollback and rollback on
failure, including restoration of the connection's autocommit mode.
"""

import psycopg2
import pytest

from pg_table_sync.reconciliation.apply import (
    TransactionalApplier,
    build_delete_query,
    build_upsert_query,
)
from pg_table_sync.reconciliation.diff import DiffResult
from pg_table_sync.reconciliation.errors import (
    ApplyError,
    MaterializationError,
    TransactionError,
)
from pg_table_sync.reconciliation.quoting import TableIdentity
from pg_table_sync.reconciliation.schema import ColumnInfo, TableSchema

COLUMNS = ["id", "name", "price"]


def make_schema(primary_key=("id",), columns=COLUMNS, exclude=frozenset()) -> TableSchema:
    return TableSchema(
        table=TableIdentity("public", "items"),
        primary_key=list(primary_key),
        columns=[ColumnInfo(name, "pg_catalog", "text") for name in columns],
        exclude_columns=exclude,
    )


def make_target(make_connection, rows=None):
    return make_connection(["id"], COLUMNS, rows=rows or [
        {"id": 2, "name": "old", "price": 1},
        {"id": 3, "name": "gone", "price": 9},
    ], autocommit=True)


SCENARIO = DiffResult(to_insert={(1,)}, to_upsert={(2,)}, to_delete={(3,)})
SCENARIO_ROWS = [((1,), (1, "apple", 3)), ((2,), (2, "pear", 4))]


class TestBuildQueries:
    """Test upsert and delete statement construction."""

    def test_upsert_query(self):
        query = build_upsert_query(make_schema())

        assert query == (
            'INSERT INTO "public"."items" ("id", "name", "price") VALUES (%s, %s, %s) '
            'ON CONFLICT ("id") DO UPDATE SET "name" = EXCLUDED."name", '
            '"price" = EXCLUDED."price"'
        )

    def test_upsert_query_excluded_column(self):
        """Excluded columns are neither inserted nor updated."""
        query = build_upsert_query(make_schema(exclude=frozenset({"price"})))

        assert '"price"' not in query
        assert "VALUES (%s, %s)" in query

    def test_upsert_query_key_only_table(self):
        """A table made only of key columns does nothing on conflict."""
        query = build_upsert_query(make_schema(primary_key=("a", "b"), columns=["a", "b"]))

        assert query.endswith('ON CONFLICT ("a", "b") DO NOTHING')

    def test_upsert_query_identity_key(self):
        """An identity key is written with OVERRIDING SYSTEM VALUE."""
        schema = make_schema()
        schema.columns[0] = ColumnInfo("id", "pg_catalog", "int4", identity_always=True)

        query = build_upsert_query(schema)

        assert query.startswith(
            'INSERT INTO "public"."items" ("id", "name", "price") '
            "OVERRIDING SYSTEM VALUE VALUES (%s, %s, %s) "
        )

    def test_delete_query_composite(self):
        query = build_delete_query(make_schema(primary_key=("id", "name")))

        assert query == 'DELETE FROM "public"."items" WHERE "id" = %s AND "name" = %s'


class TestTransactionalApplier:
    """Test TransactionalApplier.apply."""

    def test_commit(self, make_connection):
        """A successful patch is committed and counted."""
        target = make_target(make_connection)

        outcome = TransactionalApplier(target, make_schema()).apply(SCENARIO, SCENARIO_ROWS)

        assert (outcome.inserted, outcome.updated, outcome.deleted) == (1, 1, 1)
        assert outcome.committed is True
        assert target.commits == 1
        assert target.rows == {
            (1,): {"id": 1, "name": "apple", "price": 3},
            (2,): {"id": 2, "name": "pear", "price": 4},
        }

    def test_constraints_deferred_first(self, make_connection):
        """The transaction defers constraint checks before any write."""
        target = make_target(make_connection)

        TransactionalApplier(target, make_schema()).apply(SCENARIO, SCENARIO_ROWS)

        assert target.queries[0] == "SET CONSTRAINTS ALL DEFERRED"

    def test_upserts_before_deletes(self, make_connection):
        target = make_target(make_connection)

        TransactionalApplier(target, make_schema()).apply(SCENARIO, SCENARIO_ROWS)

        kinds = [query.split()[0] for query in target.queries[1:]]
        assert kinds == ["INSERT", "INSERT", "DELETE"]

    def test_autocommit_restored(self, make_connection):
        """Autocommit is switched off for the patch and restored afterwards."""
        target = make_target(make_connection)
        seen = []
        original_answer = target.answer

        def spy(query, params):
            seen.append(target.autocommit)
            return original_answer(query, params)

        target.answer = spy

        TransactionalApplier(target, make_schema()).apply(SCENARIO, SCENARIO_ROWS)

        assert set(seen) == {False}
        assert target.autocommit is True

    def test_autocommit_left_off_when_it_was_off(self, make_connection):
        target = make_target(make_connection)
        target.autocommit = False

        TransactionalApplier(target, make_schema()).apply(SCENARIO, SCENARIO_ROWS)

        assert target.autocommit is False

    def test_dry_run_rolls_back(self, make_connection):
        """A dry run executes every statement, then rolls back."""
        target = make_target(make_connection)
        before = target.table_rows()

        outcome = TransactionalApplier(target, make_schema(), dry_run=True).apply(
            SCENARIO, SCENARIO_ROWS
        )

        assert (outcome.inserted, outcome.updated, outcome.deleted) == (1, 1, 1)
        assert outcome.committed is False
        assert target.commits == 0
        assert target.rollbacks == 1
        assert target.rows == before

    def test_statement_failure_rolls_back(self, make_connection):
        """A failing delete rolls back the upserts already executed."""
        target = make_target(make_connection)
        before = target.table_rows()
        target.fail_on.append("DELETE")

        with pytest.raises(ApplyError) as exc_info:
            TransactionalApplier(target, make_schema()).apply(SCENARIO, SCENARIO_ROWS)

        assert exc_info.value.operation == "delete"
        assert exc_info.value.key == (3,)
        assert isinstance(exc_info.value.__cause__, psycopg2.Error)
        assert target.rows == before
        assert target.commits == 0
        assert target.autocommit is True

    def test_upsert_failure_carries_key(self, make_connection):
        target = make_target(make_connection)
        target.fail_on.append("INSERT")

        with pytest.raises(ApplyError) as exc_info:
            TransactionalApplier(target, make_schema()).apply(SCENARIO, SCENARIO_ROWS[:1])

        assert exc_info.value.operation == "upsert"
        assert exc_info.value.key == (1,)
        assert exc_info.value.stage == "apply"

    def test_row_source_failure_rolls_back(self, make_connection):
        """Errors raised while producing rows also roll the patch back."""
        target = make_target(make_connection)
        before = target.table_rows()

        def rows():
            yield (1,), (1, "apple", 3)
            raise MaterializationError("vanished", key=(2,))

        with pytest.raises(MaterializationError):
            TransactionalApplier(target, make_schema()).apply(SCENARIO, rows())

        assert target.rows == before
        assert target.rollbacks == 1

    def test_begin_failure(self, make_connection):
        """Failing to defer constraints is a TransactionError; nothing is written."""
        target = make_target(make_connection)
        target.fail_on.append("SET CONSTRAINTS")

        with pytest.raises(TransactionError):
            TransactionalApplier(target, make_schema()).apply(SCENARIO, SCENARIO_ROWS)

        assert not any(query.startswith("INSERT") for query in target.queries)
        assert target.autocommit is True

    def test_commit_failure(self, make_connection):
        target = make_target(make_connection)

        def failing_commit():
            raise psycopg2.OperationalError("server closed the connection")

        target.commit = failing_commit

        with pytest.raises(TransactionError) as exc_info:
            TransactionalApplier(target, make_schema()).apply(SCENARIO, SCENARIO_ROWS)

        assert exc_info.value.stage == "transaction"
        assert "server closed the connection" in str(exc_info.value)
        assert target.autocommit is True

    def test_delete_of_missing_row_still_counts(self, make_connection):
        """A delete that matches nothing is not an error."""
        target = make_target(make_connection, rows=[{"id": 2, "name": "x", "price": 1}])

        outcome = TransactionalApplier(target, make_schema()).apply(
            DiffResult(to_delete={(99,)}), []
        )

        assert outcome.deleted == 1
        assert outcome.committed is True
