"""
Unit tests for table introspection.
"""

from unittest.mock import MagicMock

import psycopg2
import pytest

from pg_table_sync.reconciliation.errors import NoPrimaryKeyError, SchemaError
from pg_table_sync.reconciliation.quoting import TableIdentity
from pg_table_sync.reconciliation.schema import (
    ColumnInfo,
    TableSchema,
    get_columns,
    get_primary_key_columns,
    introspect_table,
)

TABLE = TableIdentity("public", "orders")


def make_schema(**kwargs) -> TableSchema:
    defaults = dict(
        table=TABLE,
        primary_key=["id"],
        columns=[
            ColumnInfo("id", "pg_catalog", "int4"),
            ColumnInfo("status", "pg_catalog", "text"),
            ColumnInfo("total", "pg_catalog", "numeric"),
            ColumnInfo("total_cents", "pg_catalog", "int8", is_generated=True),
        ],
    )
    defaults.update(kwargs)
    return TableSchema(**defaults)


class TestColumnInfo:
    """Test ColumnInfo."""

    def test_cast_quotes_type(self):
        """cast produces a quoted, schema-qualified type reference."""
        column = ColumnInfo("id", "pg_catalog", "uuid")
        assert column.cast == '"pg_catalog"."uuid"'

    def test_cast_user_defined_type(self):
        """User-defined enum types keep their own schema."""
        column = ColumnInfo("state", "sales", "Order State")
        assert column.cast == '"sales"."Order State"'


class TestTableSchema:
    """Test TableSchema column selections."""

    def test_column_names(self):
        """column_names keeps ordinal order and includes everything."""
        schema = make_schema(exclude_columns=frozenset({"total"}))
        assert schema.column_names == ["id", "status", "total", "total_cents"]

    def test_write_columns_skip_generated(self):
        """Generated columns are never written."""
        assert make_schema().write_columns == ["id", "status", "total"]

    def test_write_columns_skip_excluded(self):
        """Excluded columns are never written."""
        schema = make_schema(exclude_columns=frozenset({"status"}))
        assert schema.write_columns == ["id", "total"]

    def test_update_columns_skip_key(self):
        """update_columns are the non-key write columns."""
        assert make_schema().update_columns == ["status", "total"]

    def test_overrides_identity(self):
        """An always-identity write column requires overriding on insert."""
        columns = [
            ColumnInfo("id", "pg_catalog", "int4", identity_always=True),
            ColumnInfo("status", "pg_catalog", "text"),
        ]

        assert make_schema(columns=columns).overrides_identity is True
        assert make_schema().overrides_identity is False

    def test_update_columns_skip_identity(self):
        """Always-identity columns can only be inserted, never updated."""
        columns = [
            ColumnInfo("id", "pg_catalog", "int4"),
            ColumnInfo("seq", "pg_catalog", "int8", identity_always=True),
            ColumnInfo("status", "pg_catalog", "text"),
        ]
        schema = make_schema(columns=columns)

        assert schema.write_columns == ["id", "seq", "status"]
        assert schema.update_columns == ["status"]

    def test_key_columns_follow_key_order(self):
        """key_columns follow primary-key order, not column order."""
        schema = make_schema(primary_key=["status", "id"])
        assert [column.name for column in schema.key_columns] == ["status", "id"]


class TestCatalogQueries:
    """Test the catalog query helpers."""

    def setup_method(self):
        """Set up a mock connection."""
        self.cursor = MagicMock()
        self.cursor.__enter__.return_value = self.cursor
        self.conn = MagicMock()
        self.conn.cursor.return_value = self.cursor

    def test_get_primary_key_columns(self):
        """Key columns are returned in key order."""
        self.cursor.fetchall.return_value = [("tenant_id",), ("id",)]

        assert get_primary_key_columns(self.conn, TABLE) == ["tenant_id", "id"]
        self.cursor.execute.assert_called_once()
        assert self.cursor.execute.call_args[0][1] == ("public", "orders")

    def test_get_columns(self):
        """Columns carry their type, generated and identity flags."""
        self.cursor.fetchall.return_value = [
            ("id", "pg_catalog", "int4", "NEVER", "YES", "ALWAYS"),
            ("seq", "pg_catalog", "int8", "NEVER", "YES", "BY DEFAULT"),
            ("total_cents", "pg_catalog", "int8", "ALWAYS", "NO", None),
        ]

        columns = get_columns(self.conn, TABLE)

        assert columns == [
            ColumnInfo("id", "pg_catalog", "int4", False, identity_always=True),
            ColumnInfo("seq", "pg_catalog", "int8", False),
            ColumnInfo("total_cents", "pg_catalog", "int8", True),
        ]

    def test_driver_error_wrapped(self):
        """Driver errors become SchemaError with the cause chained."""
        self.cursor.execute.side_effect = psycopg2.OperationalError("connection lost")

        with pytest.raises(SchemaError) as exc_info:
            get_primary_key_columns(self.conn, TABLE)

        assert isinstance(exc_info.value.__cause__, psycopg2.OperationalError)
        assert "connection lost" in str(exc_info.value)
        assert exc_info.value.stage == "introspect"


class TestIntrospectTable:
    """Test introspect_table against the in-memory connection."""

    def test_discovers_key_and_columns(self, make_connection):
        """Primary key and columns are read from the catalog."""
        conn = make_connection(["id"], ["id", "name", "slug"], generated=("slug",))

        schema = introspect_table(conn, TABLE)

        assert schema.primary_key == ["id"]
        assert schema.column_names == ["id", "name", "slug"]
        assert schema.write_columns == ["id", "name"]

    def test_no_primary_key(self, make_connection):
        """A table without a primary key is rejected."""
        conn = make_connection([], ["id", "name"])

        with pytest.raises(NoPrimaryKeyError, match="has no primary key"):
            introspect_table(conn, TABLE)

    def test_missing_table(self, make_connection):
        """A key without columns means the table cannot be read."""
        conn = make_connection(["id"], [])

        with pytest.raises(SchemaError, match="has no columns"):
            introspect_table(conn, TABLE)

    def test_excluding_key_column_rejected(self, make_connection):
        """Primary-key columns cannot be excluded."""
        conn = make_connection(["id"], ["id", "name"])

        with pytest.raises(SchemaError, match="cannot be excluded"):
            introspect_table(conn, TABLE, exclude_columns=["id"])

    def test_unknown_exclusions_ignored(self, make_connection, caplog):
        """Unknown excluded columns are dropped with a warning."""
        conn = make_connection(["id"], ["id", "name"])

        schema = introspect_table(conn, TABLE, exclude_columns=["nope", "name"])

        assert schema.exclude_columns == frozenset({"name"})
        assert "nope" in caplog.text
