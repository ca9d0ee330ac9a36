"""
Reconciliation run: make one target table match its source.

Flow: introspect (source) -> fingerprint source -> fingerprint target ->
diff -> materialize (source) -> apply (target, one transaction).
"""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pg_table_sync.utils.logging import ContextLogger
from pg_table_sync.utils.metrics import ReconciliationMetrics
from pg_table_sync.utils.tracing import add_span_attributes, trace_operation

from .apply import ApplyOutcome, TransactionalApplier
from .diff import compute_diff
from .errors import TableSyncError
from .fingerprint import fingerprint_table
from .materialize import RowMaterializer
from .quoting import DEFAULT_SCHEMA, split_schema_table
from .schema import introspect_table


@dataclass
class SyncOptions:
    """Inputs of one reconciliation run."""

    table: str
    where: str | None = None
    dry_run: bool = False
    force: bool = False
    exclude_columns: frozenset[str] = field(default_factory=frozenset)
    default_schema: str = DEFAULT_SCHEMA
    batch_size: int = 1000

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        self.exclude_columns = frozenset(self.exclude_columns)
        if self.where is not None and not self.where.strip():
            self.where = None


@dataclass
class SyncResult:
    """Outcome of a reconciliation run."""

    table: str
    dry_run: bool
    force: bool
    where: str | None
    source_rows: int = 0
    target_rows: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    committed: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration_seconds: float = 0.0

    @property
    def changed(self) -> int:
        """Number of keys the patch touched (or would touch on a dry run)."""
        return self.inserted + self.updated + self.deleted

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "table": self.table,
            "dry_run": self.dry_run,
            "force": self.force,
            "where": self.where,
            "source_rows": self.source_rows,
            "target_rows": self.target_rows,
            "inserted": self.inserted,
            "updated": self.updated,
            "deleted": self.deleted,
            "unchanged": self.unchanged,
            "committed": self.committed,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
        }


def make_table_same(
    source_conn: Any,
    target_conn: Any,
    options: SyncOptions,
    metrics: ReconciliationMetrics | None = None,
) -> SyncResult:
    """
    Reconcile one table so the target matches the source.

    Args:
        source_conn: Read-only source connection
        target_conn: Read-write target connection
        options: Run options
        metrics: Optional Prometheus metrics to record the run into

    Returns:
        SyncResult

    Raises:
        TableSyncError: Any stage failure; the target is left untouched
    """
    table = split_schema_table(options.table, options.default_schema)
    logger = ContextLogger(__name__, table=str(table))
    result = SyncResult(
        table=str(table),
        dry_run=options.dry_run,
        force=options.force,
        where=options.where,
    )
    started = time.monotonic()

    try:
        with trace_operation(
            "make_table_same",
            table=str(table),
            dry_run=options.dry_run,
            force=options.force,
        ):
            schema = introspect_table(source_conn, table, options.exclude_columns)
            logger.info(f"Primary key columns: {schema.primary_key}")

            source = fingerprint_table(
                source_conn,
                schema,
                where=options.where,
                batch_size=options.batch_size,
                side="source",
            )
            result.source_rows = len(source)

            if options.where:
                # A filtered run only ever looks at target rows that the filter
                # selected on the source, so nothing outside it is deleted.
                if not source:
                    logger.info("No rows to synchronize")
                    return _finish(result, started, metrics)
                target_keys = source.keys()
            else:
                target_keys = None

            target = fingerprint_table(
                target_conn,
                schema,
                keys=target_keys,
                batch_size=options.batch_size,
                side="target",
            )
            result.target_rows = len(target)

            with trace_operation("compute_diff", table=str(table)):
                diff = compute_diff(source, target, force=options.force)
                add_span_attributes(**diff.summary())
            result.unchanged = len(diff.unchanged)

            if diff.is_empty:
                logger.info("Target already matches source, nothing to apply")
                return _finish(result, started, metrics)

            materializer = RowMaterializer(source_conn, schema, batch_size=options.batch_size)
            applier = TransactionalApplier(target_conn, schema, dry_run=options.dry_run)

            outcome = applier.apply(diff, materializer.fetch_many(diff.keys_to_write))
            _record_outcome(result, outcome)

            logger.info(
                f"{'Dry run validated' if options.dry_run else 'Synchronization completed'}: "
                f"{outcome.inserted} inserted, {outcome.updated} updated, {outcome.deleted} deleted"
            )
            return _finish(result, started, metrics)

    except TableSyncError as e:
        logger.error(f"Reconciliation failed during {e.stage}: {e}")
        if metrics is not None:
            metrics.record_run(result.table, success=False, duration=time.monotonic() - started)
        raise


def _record_outcome(result: SyncResult, outcome: ApplyOutcome) -> None:
    result.inserted = outcome.inserted
    result.updated = outcome.updated
    result.deleted = outcome.deleted
    result.committed = outcome.committed


def _finish(
    result: SyncResult,
    started: float,
    metrics: ReconciliationMetrics | None,
) -> SyncResult:
    result.duration_seconds = time.monotonic() - started

    if metrics is not None:
        metrics.record_run(
            result.table,
            success=True,
            duration=result.duration_seconds,
            rows_compared=result.source_rows,
        )
        if result.committed:
            metrics.record_patch(result.table, result.inserted, result.updated, result.deleted)

    return result
