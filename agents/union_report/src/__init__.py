"""
Union Report Agent - Source modules

This package combines several SharePoint lists/libraries into one report:
- Microsoft Graph integration (discovery, columns, paged items)
- Union schema construction with coverage and type conflicts
- Row normalization with provenance
- CSV and Excel export
"""

from .graph_client import (
    GraphClient,
    GraphApiError,
    RetryPolicy,
    SharePointSite,
    SharePointList,
    ItemPage,
    create_graph_client,
    to_raw_record,
)

from .report_builder import (
    ReportBuilder,
    SchemaBuild,
    SchemaCache,
    ExportResult,
)

__all__ = [
    # Graph client
    "GraphClient",
    "GraphApiError",
    "RetryPolicy",
    "SharePointSite",
    "SharePointList",
    "ItemPage",
    "create_graph_client",
    "to_raw_record",
    # Orchestration
    "ReportBuilder",
    "SchemaBuild",
    "SchemaCache",
    "ExportResult",
]
