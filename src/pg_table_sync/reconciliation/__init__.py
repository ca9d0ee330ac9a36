"""
Single-table reconciliation engine.

Usage:
    from pg_table_sync.reconciliation import SyncOptions, make_table_same

    result = make_table_same(source_conn, target_conn, SyncOptions(table="public.orders"))
"""

from .apply import ApplyOutcome, TransactionalApplier, build_delete_query, build_upsert_query
from .diff import DiffResult, compute_diff
from .engine import SyncOptions, SyncResult, make_table_same
from .errors import (
    ApplyError,
    MaterializationError,
    NoPrimaryKeyError,
    QueryError,
    SchemaError,
    TableSyncError,
    TransactionError,
)
from .fingerprint import RowKey, build_fingerprint_query, fingerprint_table
from .materialize import RowMaterializer
from .quoting import TableIdentity, quote_identifier, split_schema_table
from .schema import ColumnInfo, TableSchema, introspect_table

__all__ = [
    "make_table_same",
    "SyncOptions",
    "SyncResult",
    "introspect_table",
    "TableSchema",
    "ColumnInfo",
    "fingerprint_table",
    "build_fingerprint_query",
    "RowKey",
    "compute_diff",
    "DiffResult",
    "RowMaterializer",
    "TransactionalApplier",
    "ApplyOutcome",
    "build_upsert_query",
    "build_delete_query",
    "TableIdentity",
    "quote_identifier",
    "split_schema_table",
    "TableSyncError",
    "SchemaError",
    "NoPrimaryKeyError",
    "QueryError",
    "MaterializationError",
    "TransactionError",
    "ApplyError",
]
