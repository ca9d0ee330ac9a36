"""
Result formatting and export utilities.

A run result is rendered for the terminal or written to a JSON file that
the ``report`` command can render again later.
"""

import json
from pathlib import Path
from typing import Any

REQUIRED_KEYS = ("table", "dry_run", "inserted", "updated", "deleted")


def export_result_json(result: dict[str, Any], output_path: str) -> None:
    """
    Export a run result to a JSON file

    Args:
        result: Result dictionary (SyncResult.to_dict())
        output_path: Path to output file
    """
    path = Path(output_path)
    if path.parent != Path("."):
        path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        json.dump(result, f, indent=2)


def load_result(input_path: str) -> dict[str, Any]:
    """
    Load a run result saved by export_result_json

    Args:
        input_path: Path to JSON file

    Returns:
        Result dictionary

    Raises:
        ValueError: If the file is not a saved run result
    """
    with open(input_path) as f:
        result = json.load(f)

    if not isinstance(result, dict):
        raise ValueError(f"{input_path} does not contain a run result")

    missing = [key for key in REQUIRED_KEYS if key not in result]
    if missing:
        raise ValueError(f"{input_path} is missing fields: {', '.join(missing)}")

    return result


def _status(result: dict[str, Any]) -> str:
    changed = result["inserted"] + result["updated"] + result["deleted"]
    if changed == 0:
        return "IN SYNC"
    if result["dry_run"]:
        return "DRY RUN (rolled back)"
    return "SYNCHRONIZED" if result.get("committed") else "NOT APPLIED"


def format_result_console(result: dict[str, Any]) -> str:
    """
    Format a run result for console output

    Args:
        result: Result dictionary

    Returns:
        Formatted string for console display
    """
    lines = []

    lines.append("=" * 60)
    lines.append("TABLE SYNC RESULT")
    lines.append("=" * 60)
    lines.append(f"Table: {result['table']}")
    lines.append(f"Status: {_status(result)}")
    if result.get("started_at"):
        lines.append(f"Started: {result['started_at']}")
    if result.get("where"):
        lines.append(f"Filter: {result['where']}")
    if result.get("force"):
        lines.append("Force: every shared key rewritten")
    lines.append("")

    lines.append("ROWS")
    lines.append("-" * 60)
    lines.append(f"Source rows: {result.get('source_rows', 0):,}")
    lines.append(f"Target rows: {result.get('target_rows', 0):,}")
    lines.append(f"Unchanged: {result.get('unchanged', 0):,}")
    lines.append("")

    verb = "Would" if result["dry_run"] else ""
    lines.append("CHANGES")
    lines.append("-" * 60)
    lines.append(f"{verb + ' insert' if verb else 'Inserted'}: {result['inserted']:,}")
    lines.append(f"{verb + ' update' if verb else 'Updated'}: {result['updated']:,}")
    lines.append(f"{verb + ' delete' if verb else 'Deleted'}: {result['deleted']:,}")

    if "duration_seconds" in result:
        lines.append("")
        lines.append(f"Duration: {result['duration_seconds']:.2f}s")

    lines.append("=" * 60)

    return "\n".join(lines)
