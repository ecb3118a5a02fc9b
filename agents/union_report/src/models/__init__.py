"""Data models for Union Report Agent."""

from .schemas import (
    ColumnType,
    ColumnDefinition,
    SourceColumn,
    TypeConflict,
    UnionSchemaColumn,
    CoverageMatrix,
    UnionSchema,
    ValidationIssue,
    ValidationReport,
    SourceProvenance,
    LookupValue,
    PersonValue,
    TaxonomyValue,
    UrlValue,
    CoercionIssue,
    SourceRef,
    SourceDescriptor,
    ReportRequest,
    StageResult,
    PreviewResult,
    ExportColumn,
    ExportPayload,
    ReportRun,
    NormalizedRow,
    RawRecord,
    PROVENANCE_FIELDS,
    ITEM_URL_FIELD,
)

__all__ = [
    "ColumnType",
    "ColumnDefinition",
    "SourceColumn",
    "TypeConflict",
    "UnionSchemaColumn",
    "CoverageMatrix",
    "UnionSchema",
    "ValidationIssue",
    "ValidationReport",
    "SourceProvenance",
    "LookupValue",
    "PersonValue",
    "TaxonomyValue",
    "UrlValue",
    "CoercionIssue",
    "SourceRef",
    "SourceDescriptor",
    "ReportRequest",
    "StageResult",
    "PreviewResult",
    "ExportColumn",
    "ExportPayload",
    "ReportRun",
    "NormalizedRow",
    "RawRecord",
    "PROVENANCE_FIELDS",
    "ITEM_URL_FIELD",
]
