"""Display formatting for normalized values (exports and search)."""

import json
from typing import Any, Mapping

from ..models.schemas import ColumnType

FORMULA_PREFIXES = ('=', '+', '-', '@')


def flatten_value(value: Any, column_type: ColumnType) -> Any:
    """
    Flatten a normalized value into a single cell value.

    Structured values render their human-readable part, choices join with
    "; ", booleans render as Yes/No and nulls as an empty string.
    """
    if value is None:
        return ""

    if column_type == ColumnType.BOOLEAN:
        return "Yes" if value else "No"

    if column_type == ColumnType.CHOICE:
        if isinstance(value, (list, tuple)):
            return "; ".join(str(v) for v in value)
        return str(value)

    if isinstance(value, Mapping):
        if column_type == ColumnType.LOOKUP:
            return value.get("title") or ""
        if column_type == ColumnType.PERSON:
            return value.get("displayName") or ""
        if column_type == ColumnType.TAXONOMY:
            return value.get("label") or ""
        if column_type == ColumnType.URL:
            return value.get("url") or ""
        return json.dumps(value, default=str)

    if isinstance(value, (list, tuple)):
        return "; ".join(str(v) for v in value)

    return value


def display_text(value: Any) -> str:
    """Text used for substring search over a value of any shape."""
    if value is None:
        return ""
    if isinstance(value, Mapping):
        return " ".join(display_text(v) for v in value.values() if v is not None)
    if isinstance(value, (list, tuple)):
        return " ".join(display_text(v) for v in value)
    return str(value)


def sanitize_for_excel(value: Any) -> Any:
    """Prevent formula injection in spreadsheet cells."""
    if isinstance(value, str) and value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value
