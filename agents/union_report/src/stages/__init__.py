"""Stage implementations for Union Report Agent."""

from .stage1_collection import SourceCollector, CollectionResult
from .stage2_unification import (
    build_union_schema,
    validate_union_schema,
    collect_source_columns,
    coverage_percent,
)
from .stage3_normalization import RowNormalizer, normalize_row, filter_rows
from .stage4_export import ReportExporter, build_export_payload, CONTENT_TYPES

__all__ = [
    "SourceCollector",
    "CollectionResult",
    "build_union_schema",
    "validate_union_schema",
    "collect_source_columns",
    "coverage_percent",
    "RowNormalizer",
    "normalize_row",
    "filter_rows",
    "ReportExporter",
    "build_export_payload",
    "CONTENT_TYPES",
]
