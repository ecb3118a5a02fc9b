#!/usr/bin/env python3
"""
Union Report CLI - Combine SharePoint lists into one report

Builds a union schema across the selected lists/libraries and exports their
items as CSV or Excel, with a ReportRun JSON audit record beside the file.

Usage:
    python -m agents.union_report.src.run_report --sources sources.yaml
    python -m agents.union_report.src.run_report --sources sources.yaml --format csv --search overdue
    python -m agents.union_report.src.run_report --sources sources.yaml --schema-only
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .graph_client import create_graph_client
from .models import ReportRequest, SourceRef
from .report_builder import ReportBuilder
from .utils.config_loader import load_config, get_collection_settings, get_export_settings

load_dotenv()

TOKEN_ENV_VAR = "GRAPH_ACCESS_TOKEN"

# Default output directory
DEFAULT_OUTPUT_DIR = os.path.join(
    os.path.dirname(os.path.abspath(__file__)),
    "..",
    "report_results"
)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Combine SharePoint lists and libraries into one report.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Export every item of the listed sources to Excel
    python run_report.py --sources sources.yaml

    # CSV export of matching rows, selected columns only
    python run_report.py --sources sources.yaml --format csv --search overdue --columns Title Status

    # Inspect the union schema without fetching items
    python run_report.py --sources sources.yaml --schema-only

Sources file (YAML or JSON):
    sources:
      - site_id: contoso.sharepoint.com,1111,2222
        list_id: 3333
      - "contoso.sharepoint.com,1111,2222:4444"
        """,
    )

    parser.add_argument(
        "-s", "--sources",
        required=True,
        help="Path to YAML/JSON file listing the sources (site_id + list_id)",
    )
    parser.add_argument(
        "-f", "--format",
        choices=["csv", "xlsx"],
        help="Export format (default: from config, xlsx)",
    )
    parser.add_argument(
        "-o", "--output",
        default=DEFAULT_OUTPUT_DIR,
        help=f"Output directory for exports and run records (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument(
        "--search",
        help="Only keep rows containing this text (case-insensitive)",
    )
    parser.add_argument(
        "--columns",
        nargs="+",
        help="Only export these columns, in this order",
    )
    parser.add_argument(
        "--no-schema-sheets",
        action="store_true",
        help="Omit the Schema Map and Source Coverage sheets from Excel exports",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--schema-only",
        action="store_true",
        help="Build and print the union schema without fetching items",
    )
    mode.add_argument(
        "--preview",
        type=int,
        metavar="N",
        help="Fetch a preview of N rows instead of a full export",
    )

    parser.add_argument(
        "-c", "--config",
        help="Path to config YAML (default: agents/union_report/config/config.yaml)",
    )
    parser.add_argument(
        "-t", "--token",
        help=f"Graph access token (default: ${TOKEN_ENV_VAR})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args(argv)


def _source_ref(entry: Any) -> SourceRef:
    if isinstance(entry, str):
        site_id, sep, list_id = entry.rpartition(":")
        if not sep or not site_id or not list_id:
            raise ValueError(f"Source '{entry}' must look like <site_id>:<list_id>")
        return SourceRef(site_id=site_id, list_id=list_id)
    if isinstance(entry, dict):
        return SourceRef.model_validate(entry)
    raise ValueError(f"Unsupported source entry: {entry!r}")


def load_sources(sources_path: str) -> List[SourceRef]:
    """
    Load source references from a YAML or JSON file.

    Accepts either a top-level list or a mapping with a `sources` list. Each
    entry is a mapping with site_id/list_id (or siteId/listId) or a
    "<site_id>:<list_id>" string.

    Raises:
        ValueError: If the file is malformed
    """
    with open(sources_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    entries = data.get('sources', []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValueError(f"{sources_path}: 'sources' must be a list")

    try:
        return [_source_ref(entry) for entry in entries]
    except ValidationError as e:
        raise ValueError(f"{sources_path}: invalid source entry: {e}") from e


def print_schema(builder_result) -> None:
    """Print the union schema and its validation findings."""
    schema = builder_result.schema
    print(f"Sources: {schema.total_sources}   Columns: {schema.total_columns}")
    for column in schema.columns:
        conflict = " (type conflicts)" if column.has_conflicts else ""
        print(f"  • {column.label:<40} {column.type.value:<12} {column.coverage:>3}%{conflict}")

    if builder_result.validation.issues:
        print("\n--- VALIDATION ---")
        for issue in builder_result.validation.issues:
            print(f"  • [{issue.severity}] {issue.message}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    logger = logging.getLogger(__name__)

    token = args.token or os.environ.get(TOKEN_ENV_VAR)
    if not token:
        logger.error(f"No access token: pass --token or set {TOKEN_ENV_VAR}")
        return 1

    config = load_config(args.config)
    sources = load_sources(args.sources)
    logger.info(f"Loaded {len(sources)} sources from {args.sources}")

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    client = create_graph_client(token, config)
    builder = ReportBuilder(client, config)

    request = ReportRequest(
        sources=sources,
        columns=args.columns,
        search=args.search,
        format=args.format or get_export_settings(config).get("default_format", "xlsx"),
        include_schema=not args.no_schema_sheets,
        limit=args.preview or get_collection_settings(config).get("preview_limit", 1000),
    )

    print("\n" + "=" * 60)

    if args.schema_only:
        build = builder.build_schema(request.sources)
        print("UNION SCHEMA")
        print("=" * 60)
        print_schema(build)
        schema_file = output_dir / "union_schema.json"
        with open(schema_file, 'w') as f:
            json.dump(build.schema.model_dump(by_alias=True, mode="json"), f, indent=2)
        print(f"\nSchema saved to: {schema_file}")
        print("\n" + "=" * 60)
        return 0 if not build.failed_sources else 1

    if args.preview:
        preview = builder.preview(request)
        print("PREVIEW")
        print("=" * 60)
        print(f"Rows shown: {len(preview.rows)} of {preview.total_rows}"
              f"{' (more available)' if preview.has_more else ''}")
        preview_file = output_dir / "preview.json"
        with open(preview_file, 'w') as f:
            json.dump(preview.model_dump(mode="json", by_alias=True), f, indent=2, default=str)
        print(f"\nPreview saved to: {preview_file}")
        print("\n" + "=" * 60)
        return 0

    result = builder.export(request)
    run = result.run

    export_file = output_dir / result.filename
    export_file.write_bytes(result.content)
    run.output_artifacts[request.format] = str(export_file)

    run_file = output_dir / f"{run.run_id}.json"
    with open(run_file, 'w') as f:
        json.dump(run.model_dump(mode="json"), f, indent=2, default=str)

    # Print summary
    print("EXPORT COMPLETE")
    print("=" * 60)
    print(f"Run ID: {run.run_id}")
    print(f"Status: {run.status}")
    print(f"Sources: {run.source_count} of {len(request.sources)}")
    print(f"Rows: {run.row_count}{' (truncated)' if run.truncated else ''}")
    print(f"Coercion issues: {len(run.coercion_issues)}")
    print(f"\nExport saved to: {export_file}")
    print(f"Run record saved to: {run_file}")

    if run.validation.issues:
        print("\n--- VALIDATION ---")
        for issue in run.validation.issues:
            print(f"  • [{issue.severity}] {issue.message}")

    if run.errors:
        print("\n--- ERRORS ---")
        for error in run.errors:
            print(f"  • {error}")

    print("\n" + "=" * 60)

    return 0 if run.status == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
