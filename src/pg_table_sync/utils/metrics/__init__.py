"""
Prometheus metrics for reconciliation runs

Usage:
    from pg_table_sync.utils.metrics import ReconciliationMetrics

    metrics = ReconciliationMetrics()
    metrics.record_run("public.orders", success=True, duration=4.2, rows_compared=1000)
    metrics.record_patch("public.orders", inserted=3, updated=1, deleted=0)
"""

import logging

from prometheus_client import CollectorRegistry, REGISTRY, push_to_gateway

from .reconciliation import ReconciliationMetrics
from .registry import get_or_create_metric

logger = logging.getLogger(__name__)


def push_metrics(
    gateway: str,
    job: str = "pg-table-sync",
    registry: CollectorRegistry = REGISTRY,
) -> None:
    """
    Push the registry to a Prometheus Pushgateway.

    A reconciliation run is a short-lived batch job, so its metrics are
    pushed once at the end of the run instead of being scraped.

    Args:
        gateway: Pushgateway address (e.g. "localhost:9091")
        job: Job label
        registry: Registry to push
    """
    push_to_gateway(gateway, job=job, registry=registry)
    logger.info(f"Pushed metrics to {gateway}")


__all__ = [
    "ReconciliationMetrics",
    "get_or_create_metric",
    "push_metrics",
]
