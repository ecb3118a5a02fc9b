"""
Stage 3: Row Normalization

Converts raw list items into rows keyed by the union schema's column labels,
coercing each value into the shape of the union column's primary type and
stamping source provenance on every row.

Normalization never fails: values that cannot be coerced become None.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..models import (
    ITEM_URL_FIELD,
    CoercionIssue,
    NormalizedRow,
    SourceProvenance,
    UnionSchema,
    UnionSchemaColumn,
)
from ..utils.coercion import CoercionError, coerce_value
from ..utils.formatting import display_text

logger = logging.getLogger(__name__)


def lookup_raw_value(raw: Mapping[str, Any], column: UnionSchemaColumn) -> Any:
    """Find a column's raw value by internal name, then display name."""
    for key in (column.name, column.display_name):
        if key and raw.get(key) is not None:
            return raw[key]
    return None


def _issue(
    column: UnionSchemaColumn,
    provenance: SourceProvenance,
    raw: Mapping[str, Any],
    value: Any,
    reason: str,
) -> CoercionIssue:
    return CoercionIssue(
        source_id=provenance.source_id,
        item_url=raw.get("webUrl"),
        column=column.label,
        target_type=column.type,
        raw_value=value,
        reason=reason,
    )


def normalize_row(
    raw: Mapping[str, Any],
    schema: UnionSchema,
    provenance: SourceProvenance,
    issues: Optional[List[CoercionIssue]] = None,
) -> NormalizedRow:
    """
    Normalize one raw record against the union schema.

    Args:
        raw: Field key -> value mapping for one list item (plus optional webUrl)
        schema: Union schema the row is shaped by
        provenance: Source the record came from
        issues: If given, receives a CoercionIssue for each value that
            degraded to None

    Returns:
        Row with provenance fields first, then one entry per union column
        (label -> coerced value or None)
    """
    row: NormalizedRow = provenance.as_row_fields()
    row[ITEM_URL_FIELD] = raw.get("webUrl")

    for column in schema.columns:
        value = lookup_raw_value(raw, column)
        try:
            row[column.label] = coerce_value(value, column.type)
        except CoercionError as e:
            logger.debug(f"{provenance.source_id}: {e}")
            row[column.label] = None
            if issues is not None:
                issues.append(_issue(column, provenance, raw, value, e.reason))
        except Exception as e:
            logger.warning(
                f"{provenance.source_id}: unexpected error coercing column "
                f"'{column.label}' to {column.type.value}: {e}"
            )
            row[column.label] = None
            if issues is not None:
                issues.append(_issue(column, provenance, raw, value, str(e)))

    return row


class RowNormalizer:
    """Normalizes records for one union schema, optionally collecting coercion issues."""

    def __init__(self, schema: UnionSchema, strict: bool = False):
        self.schema = schema
        self.strict = strict
        self.issues: List[CoercionIssue] = []

    def normalize(self, raw: Mapping[str, Any], provenance: SourceProvenance) -> NormalizedRow:
        return normalize_row(
            raw,
            self.schema,
            provenance,
            issues=self.issues if self.strict else None,
        )

    def normalize_all(
        self,
        records: Iterable[Mapping[str, Any]],
        provenance: SourceProvenance,
    ) -> List[NormalizedRow]:
        return [self.normalize(raw, provenance) for raw in records]


def row_matches(row: Dict[str, Any], needle: str) -> bool:
    return any(needle in display_text(value).lower() for value in row.values())


def filter_rows(rows: List[NormalizedRow], search: Optional[str]) -> List[NormalizedRow]:
    """
    Literal, case-insensitive substring search over every value of each row.

    A blank search returns the rows unchanged.
    """
    if not search or not search.strip():
        return rows
    needle = search.strip().lower()
    return [row for row in rows if row_matches(row, needle)]
