"""
Error taxonomy for table reconciliation.

Every failure surfaced by the engine is a TableSyncError subclass carrying the
stage it happened in. Driver exceptions are chained as ``__cause__``.
"""

from typing import Any


class TableSyncError(Exception):
    """Base class for all reconciliation failures."""

    stage = "sync"

    def __str__(self) -> str:
        message = super().__str__()
        if self.__cause__ is not None:
            return f"{message}: {self.__cause__}"
        return message


class SchemaError(TableSyncError):
    """The table's catalog metadata could not be read or is unusable."""

    stage = "introspect"


class NoPrimaryKeyError(SchemaError):
    """The table declares no primary key and cannot be reconciled."""


class QueryError(TableSyncError):
    """A read query failed on the source or target side."""

    stage = "fingerprint"

    def __init__(self, message: str, side: str):
        super().__init__(message)
        self.side = side


class MaterializationError(TableSyncError):
    """A source row vanished between fingerprinting and materialization."""

    stage = "materialize"

    def __init__(self, message: str, key: tuple[Any, ...] | None = None):
        super().__init__(message)
        self.key = key


class TransactionError(TableSyncError):
    """Begin, commit or rollback of the target transaction failed."""

    stage = "transaction"


class ApplyError(TableSyncError):
    """An individual upsert or delete statement failed on the target."""

    stage = "apply"

    def __init__(self, message: str, operation: str, key: tuple[Any, ...] | None = None):
        super().__init__(message)
        self.operation = operation
        self.key = key
