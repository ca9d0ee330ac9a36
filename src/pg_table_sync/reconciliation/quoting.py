"""
Table identity parsing and SQL identifier quoting.

Identifiers are always double-quoted with embedded quotes doubled, so any
catalog name (mixed case, spaces, quotes) is safe to splice into SQL text.
"""

from dataclasses import dataclass

DEFAULT_SCHEMA = "public"


@dataclass(frozen=True)
class TableIdentity:
    """A schema-qualified table name."""

    schema: str
    name: str

    @property
    def quoted(self) -> str:
        """Quoted ``"schema"."name"`` reference."""
        return f"{quote_identifier(self.schema)}.{quote_identifier(self.name)}"

    def __str__(self) -> str:
        return f"{self.schema}.{self.name}"


def quote_identifier(identifier: str) -> str:
    """
    Quote a PostgreSQL identifier.

    Args:
        identifier: Raw column, table or schema name

    Returns:
        Identifier wrapped in double quotes with embedded quotes doubled
    """
    return '"' + identifier.replace('"', '""') + '"'


def join_identifiers(identifiers: list[str]) -> str:
    """Quote and comma-join a list of identifiers."""
    return ", ".join(quote_identifier(identifier) for identifier in identifiers)


def _unwrap(part: str) -> str:
    part = part.strip()
    if len(part) >= 2 and part.startswith('"') and part.endswith('"'):
        return part[1:-1].replace('""', '"')
    return part


def split_schema_table(table: str, default_schema: str = DEFAULT_SCHEMA) -> TableIdentity:
    """
    Split a ``schema.table`` string on its first dot.

    Args:
        table: Table name, optionally schema-qualified
        default_schema: Schema used when the name is unqualified

    Returns:
        TableIdentity

    Raises:
        ValueError: If the schema or table part is empty
    """
    if "." in table:
        schema, name = table.split(".", 1)
    else:
        schema, name = default_schema, table

    schema, name = _unwrap(schema), _unwrap(name)
    if not schema or not name:
        raise ValueError(f"Invalid table name: {table!r}")

    return TableIdentity(schema=schema, name=name)
