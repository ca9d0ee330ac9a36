"""
Metrics for table reconciliation runs.

Tracks runs, durations and the number of keys patched per operation.
"""

import logging
import time
from typing import Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CollectorRegistry,
    REGISTRY,
)

from .registry import get_or_create_metric

logger = logging.getLogger(__name__)


class ReconciliationMetrics:
    """
    Metrics for table reconciliation runs

    Tracks reconciliation runs, patched keys, and performance.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize reconciliation metrics

        Args:
            registry: Custom Prometheus registry (default: global REGISTRY)
        """
        self.registry = registry or REGISTRY

        self.runs_total = get_or_create_metric(
            lambda: Counter(
                "table_sync_runs_total",
                "Total number of reconciliation runs",
                ["table_name", "status"],
                registry=self.registry,
            ),
            "table_sync_runs",
            self.registry,
        )

        self.run_duration_seconds = get_or_create_metric(
            lambda: Histogram(
                "table_sync_run_duration_seconds",
                "Duration of reconciliation runs in seconds",
                ["table_name"],
                buckets=(0.5, 1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
                registry=self.registry,
            ),
            "table_sync_run_duration_seconds",
            self.registry,
        )

        self.last_run_timestamp = get_or_create_metric(
            lambda: Gauge(
                "table_sync_last_run_timestamp",
                "Timestamp of last successful reconciliation run",
                ["table_name"],
                registry=self.registry,
            ),
            "table_sync_last_run_timestamp",
            self.registry,
        )

        self.keys_patched_total = get_or_create_metric(
            lambda: Counter(
                "table_sync_keys_patched_total",
                "Total number of keys written to the target",
                ["table_name", "operation"],
                registry=self.registry,
            ),
            "table_sync_keys_patched",
            self.registry,
        )

        self.rows_compared_total = get_or_create_metric(
            lambda: Counter(
                "table_sync_rows_compared_total",
                "Total number of source rows fingerprinted",
                ["table_name"],
                registry=self.registry,
            ),
            "table_sync_rows_compared",
            self.registry,
        )

    def record_run(
        self,
        table_name: str,
        success: bool,
        duration: float,
        rows_compared: Optional[int] = None,
    ) -> None:
        """
        Record a reconciliation run

        Args:
            table_name: Name of the table reconciled
            success: Whether the run completed successfully
            duration: Duration in seconds
            rows_compared: Number of source rows fingerprinted (optional)
        """
        status = "success" if success else "failed"

        self.runs_total.labels(table_name=table_name, status=status).inc()
        self.run_duration_seconds.labels(table_name=table_name).observe(duration)

        if success:
            self.last_run_timestamp.labels(table_name=table_name).set(time.time())

        if rows_compared is not None:
            self.rows_compared_total.labels(table_name=table_name).inc(rows_compared)

        logger.debug(
            f"Recorded reconciliation run: table={table_name}, "
            f"status={status}, duration={duration:.2f}s"
        )

    def record_patch(
        self,
        table_name: str,
        inserted: int,
        updated: int,
        deleted: int,
    ) -> None:
        """
        Record the keys written by a committed run

        Args:
            table_name: Name of the table
            inserted: Rows inserted
            updated: Rows updated
            deleted: Rows deleted
        """
        for operation, count in (("insert", inserted), ("update", updated), ("delete", deleted)):
            if count:
                self.keys_patched_total.labels(
                    table_name=table_name,
                    operation=operation,
                ).inc(count)
