"""
Pytest configuration and fixtures for pg-table-sync tests.

Provides an in-memory stand-in for a psycopg2 connection that answers the
handful of statements the engine issues against a single table.
"""

import copy
import hashlib
import json
import os
import re

import psycopg2
import psycopg2.errors
import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: requires a live PostgreSQL database")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep connection and logging variables from the host out of tests."""
    for key in (
        "TABLE_SYNC_SOURCE",
        "TABLE_SYNC_TARGET",
        "VAULT_ADDR",
        "VAULT_TOKEN",
        "LOG_LEVEL",
        "LOG_FILE",
        "LOG_JSON",
        "LOG_CONSOLE",
        "OTLP_ENDPOINT",
        "TRACE_CONSOLE",
    ):
        monkeypatch.delenv(key, raising=False)


def row_hash(row: dict) -> str:
    """Deterministic stand-in for md5(row_to_json(t)::text)."""
    return hashlib.md5(json.dumps(row, sort_keys=True, default=str).encode()).hexdigest()


def _unquote(identifier: str) -> str:
    identifier = identifier.strip()
    if identifier.startswith("t."):
        identifier = identifier[2:]
    return identifier.strip('"')


class FakeCursor:
    """Cursor answering queries from its FakeConnection's table."""

    def __init__(self, conn: "FakeConnection", name: str | None = None, withhold: bool = False):
        self.conn = conn
        self.name = name
        self.withhold = withhold
        self.itersize = 2000
        self.rowcount = -1
        self._rows: list[tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query: str, params=None) -> None:
        self.conn.executed.append((query, params))
        for marker in self.conn.fail_on:
            if marker in query:
                raise psycopg2.OperationalError(f"simulated failure on {marker}")
        self._rows = self.conn.answer(query, params)
        self.rowcount = self.conn.last_rowcount

    def fetchall(self) -> list[tuple]:
        return list(self._rows)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def __iter__(self):
        return iter(self._rows)


class FakeConnection:
    """
    In-memory single-table database.

    Args:
        primary_key: Ordered key column names (empty for a keyless table)
        columns: Ordered column names
        rows: Initial rows as dicts
        generated: Columns reported as GENERATED ALWAYS
        identity: Columns reported as GENERATED ALWAYS AS IDENTITY
        filters: Map of predicate text to a Python row predicate
    """

    def __init__(
        self,
        primary_key: list[str],
        columns: list[str],
        rows: list[dict] | None = None,
        generated: tuple[str, ...] = (),
        identity: tuple[str, ...] = (),
        filters: dict | None = None,
        autocommit: bool = False,
    ):
        self.primary_key = list(primary_key)
        self.columns = list(columns)
        self.generated = set(generated)
        self.identity = set(identity)
        self.filters = filters or {}
        self.rows = {self._key_of(row): dict(row) for row in (rows or [])}
        self.autocommit = autocommit
        self.closed = 0
        self.executed: list[tuple[str, object]] = []
        self.fail_on: list[str] = []
        self.commits = 0
        self.rollbacks = 0
        self.last_rowcount = -1
        self._snapshot: dict | None = None

    def _key_of(self, row: dict) -> tuple:
        return tuple(row[column] for column in self.primary_key)

    def cursor(self, name: str | None = None, withhold: bool = False) -> FakeCursor:
        return FakeCursor(self, name=name, withhold=withhold)

    def commit(self) -> None:
        self.commits += 1
        self._snapshot = None

    def rollback(self) -> None:
        self.rollbacks += 1
        if self._snapshot is not None:
            self.rows = self._snapshot
            self._snapshot = None

    def close(self) -> None:
        self.closed = 1

    @property
    def queries(self) -> list[str]:
        return [query for query, _ in self.executed]

    def table_rows(self) -> dict:
        return copy.deepcopy(self.rows)

    def _keys_from_params(self, params) -> set[tuple]:
        width = len(self.primary_key)
        values = list(params)
        return {tuple(values[i:i + width]) for i in range(0, len(values), width)}

    def _before_write(self) -> None:
        if not self.autocommit and self._snapshot is None:
            self._snapshot = copy.deepcopy(self.rows)

    def answer(self, query: str, params) -> list[tuple]:
        self.last_rowcount = -1

        if "PRIMARY KEY" in query:
            return [(column,) for column in self.primary_key]

        if "information_schema.columns" in query:
            return [
                (
                    column,
                    "pg_catalog",
                    "text",
                    "ALWAYS" if column in self.generated else "NEVER",
                    "YES" if column in self.identity else "NO",
                    "ALWAYS" if column in self.identity else None,
                )
                for column in self.columns
            ]

        if query.startswith("SET CONSTRAINTS"):
            return []

        if "row_hash" in query:
            rows = list(self.rows.values())
            for predicate_text, predicate in self.filters.items():
                if predicate_text.replace("%", "%%") in query or predicate_text in query:
                    rows = [row for row in rows if predicate(row)]
            if params:
                wanted = self._keys_from_params(params)
                rows = [row for row in rows if self._key_of(row) in wanted]
            return [self._key_of(row) + (row_hash(row),) for row in rows]

        if query.startswith("SELECT"):
            select_list = query[len("SELECT "):query.index(" FROM ")]
            selected = [_unquote(name) for name in select_list.split(", ")]
            if "IN (VALUES" in query:
                wanted = self._keys_from_params(params)
            else:
                wanted = {tuple(params)}
            return [
                tuple(row[column] for column in selected)
                for key, row in self.rows.items()
                if key in wanted
            ]

        if query.startswith("INSERT INTO"):
            if self.identity and "OVERRIDING SYSTEM VALUE" not in query:
                raise psycopg2.errors.GeneratedAlways(
                    "cannot insert a non-DEFAULT value into an identity column"
                )
            self._before_write()
            column_list = re.search(r"\((.*?)\)(?: OVERRIDING SYSTEM VALUE)? VALUES", query)
            insert_columns = [_unquote(name) for name in column_list.group(1).split(", ")]
            incoming = dict(zip(insert_columns, params))
            key = self._key_of(incoming)
            if key in self.rows:
                if "DO NOTHING" not in query:
                    self.rows[key].update(incoming)
            else:
                self.rows[key] = {column: incoming.get(column) for column in self.columns}
            self.last_rowcount = 1
            return []

        if query.startswith("DELETE FROM"):
            self._before_write()
            key = tuple(params)
            self.last_rowcount = 1 if self.rows.pop(key, None) is not None else 0
            return []

        raise AssertionError(f"Unexpected query: {query}")


@pytest.fixture
def make_connection():
    """Factory for FakeConnection instances."""
    return FakeConnection


@pytest.fixture
def integration_dsn() -> str:
    """DSN of a scratch PostgreSQL database, or skip."""
    dsn = os.environ.get("TABLE_SYNC_TEST_DSN")
    if not dsn:
        pytest.skip("TABLE_SYNC_TEST_DSN not set")
    return dsn
