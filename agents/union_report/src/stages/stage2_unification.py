"""
Stage 2: Schema Unification

Merges the column definitions of every selected source into one union schema
with per-column coverage, type-conflict metadata and a coverage matrix.

Both functions here are pure: no I/O, no hidden state. Rebuild the schema
from scratch whenever the source set changes.
"""

import logging
from typing import Dict, Iterable, List, Literal, Sequence, Set

from ..models import (
    PROVENANCE_FIELDS,
    ColumnType,
    CoverageMatrix,
    SourceColumn,
    SourceDescriptor,
    TypeConflict,
    UnionSchema,
    UnionSchemaColumn,
    ValidationIssue,
    ValidationReport,
)

logger = logging.getLogger(__name__)

TypeResolution = Literal["majority", "first_seen"]

DEFAULT_LOW_COVERAGE_THRESHOLD = 50


def coverage_percent(present: int, total: int) -> int:
    """
    Percentage rounded half-up to the nearest integer (12.5 -> 13).

    Only full presence reports 100 and only no presence reports 0, however
    many sources there are.
    """
    if total <= 0 or present <= 0:
        return 0
    if present >= total:
        return 100
    return min(max((200 * present + total) // (2 * total), 1), 99)


def resolve_primary_type(members: Sequence[SourceColumn], strategy: TypeResolution = "majority") -> ColumnType:
    """
    Pick the union type for a group of same-key columns.

    "majority": the type declared by the most distinct sources, ties broken
    by the lexicographically smallest type name. Independent of input order.
    "first_seen": the type of the first member.
    """
    if strategy == "first_seen":
        return members[0].type

    votes: Dict[ColumnType, Set[str]] = {}
    for member in members:
        votes.setdefault(member.type, set()).add(member.source_id)
    return min(votes, key=lambda t: (-len(votes[t]), t.value))


def _unique_labels(columns: Sequence[UnionSchemaColumn]) -> List[str]:
    labels: List[str] = []
    # Provenance keys share the row namespace with column labels
    taken: Set[str] = set(PROVENANCE_FIELDS)
    for column in columns:
        label = column.display_name
        if label in taken:
            label = f"{column.display_name} ({column.grouping_key})"
            suffix = 2
            while label in taken:
                label = f"{column.display_name} ({column.grouping_key}) {suffix}"
                suffix += 1
        taken.add(label)
        labels.append(label)
    return labels


def build_union_schema(
    source_columns: Iterable[SourceColumn],
    type_resolution: TypeResolution = "majority",
) -> UnionSchema:
    """
    Build the union schema for a flat list of source columns.

    Args:
        source_columns: Columns from every selected source, in any order,
            possibly with the same logical column repeated
        type_resolution: Primary type strategy for conflicting groups

    Returns:
        UnionSchema sorted by coverage (desc) then display name (asc).
        Empty input yields an empty schema.
    """
    groups: Dict[str, List[SourceColumn]] = {}
    source_ids: List[str] = []
    source_names: Dict[str, str] = {}

    for column in source_columns:
        groups.setdefault(column.grouping_key, []).append(column)
        if column.source_id not in source_names:
            source_ids.append(column.source_id)
            source_names[column.source_id] = column.source_name or column.source_id

    total_sources = len(source_ids)
    if not groups:
        return UnionSchema.empty()

    unsorted: List[UnionSchemaColumn] = []
    for members in groups.values():
        primary_type = resolve_primary_type(members, type_resolution)
        primary = next(m for m in members if m.type == primary_type)

        sources: List[str] = []
        for member in members:
            if member.source_id not in sources:
                sources.append(member.source_id)

        conflicts = [
            TypeConflict(source_id=m.source_id, type=m.type)
            for m in members
            if m.type != primary_type
        ]

        unsorted.append(UnionSchemaColumn(
            id=primary.id,
            name=primary.name,
            display_name=primary.display_name,
            type=primary_type,
            required=any(m.required for m in members),
            hidden=all(m.hidden for m in members),
            description=primary.description,
            sources=sources,
            coverage=coverage_percent(len(sources), total_sources),
            type_conflicts=conflicts,
        ))

    ordered = sorted(unsorted, key=lambda c: (-c.coverage, c.display_name, c.grouping_key))
    labels = _unique_labels(ordered)
    columns = [c.model_copy(update={"label": label}) for c, label in zip(ordered, labels)]

    matrix = [[source_id in column.sources for source_id in source_ids] for column in columns]

    logger.info(f"Unified {len(columns)} columns across {total_sources} sources")

    return UnionSchema(
        columns=columns,
        total_sources=total_sources,
        total_columns=len(columns),
        coverage_matrix=CoverageMatrix(
            columns=labels,
            sources=source_ids,
            source_names=[source_names[s] for s in source_ids],
            matrix=matrix,
        ),
    )


def validate_union_schema(
    schema: UnionSchema,
    low_coverage_threshold: int = DEFAULT_LOW_COVERAGE_THRESHOLD,
) -> ValidationReport:
    """
    Report type conflicts, low coverage and required-but-partial columns.

    Advisory only: never mutates the schema and never blocks normalization.
    """
    issues: List[ValidationIssue] = []

    for column in schema.columns:
        if column.has_conflicts:
            detail = ", ".join(f"{tc.source_id}:{tc.type.value}" for tc in column.type_conflicts)
            issues.append(ValidationIssue(
                rule_id="type_conflict",
                severity="warning",
                column=column.label,
                message=f'Column "{column.label}" has type conflicts: {detail}',
            ))

        if column.coverage < low_coverage_threshold:
            issues.append(ValidationIssue(
                rule_id="low_coverage",
                severity="warning",
                column=column.label,
                message=f'Column "{column.label}" has low coverage ({column.coverage}%)',
            ))

        if column.required and not column.is_complete:
            issues.append(ValidationIssue(
                rule_id="required_partial",
                severity="error",
                column=column.label,
                message=(
                    f'Required column "{column.label}" is missing from some sources '
                    f'({column.coverage}% coverage)'
                ),
            ))

    return ValidationReport(issues=issues)


def collect_source_columns(descriptors: Iterable[SourceDescriptor]) -> List[SourceColumn]:
    """Flatten discovered sources into unification input."""
    columns: List[SourceColumn] = []
    for descriptor in descriptors:
        columns.extend(descriptor.source_columns())
    return columns
