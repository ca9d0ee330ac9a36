"""Run result reporting: console rendering and JSON export."""

from .formatters import export_result_json, format_result_console, load_result

__all__ = [
    "export_result_json",
    "format_result_console",
    "load_result",
]
