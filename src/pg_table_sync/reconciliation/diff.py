"""
Diff classification of source and target fingerprints.

Every key seen on either side lands in exactly one of: to_insert, to_upsert,
to_delete or unchanged.
"""

import logging
from dataclasses import dataclass, field

from .fingerprint import RowKey

logger = logging.getLogger(__name__)


@dataclass
class DiffResult:
    """Keys requiring action, grouped by the action they need."""

    to_insert: set[RowKey] = field(default_factory=set)
    to_upsert: set[RowKey] = field(default_factory=set)
    to_delete: set[RowKey] = field(default_factory=set)
    unchanged: set[RowKey] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        """True when the target already matches the source."""
        return not (self.to_insert or self.to_upsert or self.to_delete)

    @property
    def keys_to_write(self) -> set[RowKey]:
        """Keys whose source row must be materialized and upserted."""
        return self.to_insert | self.to_upsert

    def summary(self) -> dict[str, int]:
        """Counts per classification."""
        return {
            "insert": len(self.to_insert),
            "upsert": len(self.to_upsert),
            "delete": len(self.to_delete),
            "unchanged": len(self.unchanged),
        }


def compute_diff(
    source: dict[RowKey, str],
    target: dict[RowKey, str],
    force: bool = False,
) -> DiffResult:
    """
    Classify every key of the source and target fingerprint mappings.

    Args:
        source: Source fingerprints (key -> row hash)
        target: Target fingerprints (key -> row hash)
        force: Treat every key present on both sides as needing an upsert

    Returns:
        DiffResult
    """
    result = DiffResult()

    for key, source_hash in source.items():
        if key not in target:
            result.to_insert.add(key)
        elif force or source_hash != target[key]:
            result.to_upsert.add(key)
        else:
            result.unchanged.add(key)

    result.to_delete = {key for key in target if key not in source}

    logger.info(
        f"Diff: {len(result.to_insert)} to insert, {len(result.to_upsert)} to upsert, "
        f"{len(result.to_delete)} to delete, {len(result.unchanged)} unchanged"
    )

    return result
