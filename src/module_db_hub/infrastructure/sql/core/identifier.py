"""
SQL identifier and literal handling utilities.

Provides functions for proper quoting and qualification of SQL identifiers
(schema, table, column, index and policy names) and of the few literal values
the DDL generator emits.
"""

from typing import Optional, Union


def quote_identifier(name: str) -> str:
    """
    Quote a SQL identifier using PostgreSQL syntax.

    Examples:
        >>> quote_identifier("contacts")
        '"contacts"'
        >>> quote_identifier('odd"name')
        '"odd""name"'
    """
    escaped = name.replace('"', '""')
    return f'"{escaped}"'


def qualify_table(table: str, schema: Optional[str] = None) -> str:
    """
    Create a fully qualified, fully quoted table name.

    Examples:
        >>> qualify_table("contacts", schema="mod_a1b2c3d4")
        '"mod_a1b2c3d4"."contacts"'
        >>> qualify_table("users")
        '"users"'
    """
    quoted_table = quote_identifier(table)
    if schema:
        return f"{quote_identifier(schema)}.{quoted_table}"
    return quoted_table


def quote_literal(value: Union[str, int, float, bool, None]) -> str:
    """
    Render a Python scalar as a SQL literal.

    Examples:
        >>> quote_literal("it's")
        "'it''s'"
        >>> quote_literal(True)
        'TRUE'
        >>> quote_literal(None)
        'NULL'
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"
