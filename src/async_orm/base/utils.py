import logging
from datetime import date, datetime
from typing import Any

log = logging.getLogger(__name__)


def quote_identifier(identifier: str) -> str:
    """Double-quote a SQL identifier, escaping embedded quotes."""
    safe_identifier = identifier.replace('"', '""')
    return f'"{safe_identifier}"'


def quote_literal(value: str) -> str:
    """Single-quote a SQL string literal, escaping embedded quotes."""
    safe_value = value.replace("'", "''")
    return f"'{safe_value}'"


def literal_to_sql(value: Any) -> str:
    """
    Render a python value as a SQL literal for DDL defaults.

    Handles:
    - bool (TRUE/FALSE, checked before int since bool is an int)
    - int and float (as-is)
    - datetime and date (ISO-8601 string literal)
    - str (quoted)

    Args:
        value: The default value to render

    Returns:
        The SQL literal text
    """
    if value is None:
        return "NULL"

    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"

    if isinstance(value, (int, float)):
        return str(value)

    if isinstance(value, (datetime, date)):
        return quote_literal(value.isoformat())

    if isinstance(value, str):
        return quote_literal(value)

    log.debug(f"Rendering default of type {type(value).__name__} via str()")
    return quote_literal(str(value))
