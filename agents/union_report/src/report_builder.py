"""
Report Builder

Orchestrates the stages for a report request: describe the sources, unify
their schemas, fetch and normalize rows, search, and render a preview or an
export with its ReportRun audit record.

Usage:
    client = create_graph_client(token)
    builder = ReportBuilder(client)

    preview = builder.preview(ReportRequest(sources=[...], limit=50))
    result = builder.export(ReportRequest(sources=[...], format="xlsx"))
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, Iterable, List, Optional, Sequence, Tuple

from .models import (
    PreviewResult,
    ReportRequest,
    ReportRun,
    SourceDescriptor,
    SourceRef,
    StageResult,
    UnionSchema,
    ValidationReport,
)
from .stages import (
    CONTENT_TYPES,
    ReportExporter,
    RowNormalizer,
    SourceCollector,
    build_export_payload,
    build_union_schema,
    collect_source_columns,
    filter_rows,
    validate_union_schema,
)
from .utils.config_loader import (
    load_config,
    get_export_settings,
    get_low_coverage_threshold,
    get_type_resolution,
)
from .utils.id_generator import generate_export_filename, generate_run_id

logger = logging.getLogger(__name__)


@dataclass
class SchemaBuild:
    """Discovered sources with their union schema and validation findings."""
    descriptors: List[SourceDescriptor]
    schema: UnionSchema
    validation: ValidationReport
    source_results: Dict[str, StageResult]

    @property
    def failed_sources(self) -> List[str]:
        return [sid for sid, r in self.source_results.items() if r.status == "failed"]


@dataclass
class ExportResult:
    """A rendered export file and the audit record of the run that produced it."""
    content: bytes
    filename: str
    content_type: str
    run: ReportRun


class SchemaCache:
    """
    Union schemas keyed by the exact set of source ids.

    Any change to the source set misses the cache, so a schema is never
    patched incrementally.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, ...], SchemaBuild] = {}

    @staticmethod
    def key(source_ids: Iterable[str]) -> Tuple[str, ...]:
        return tuple(sorted(set(source_ids)))

    def get(self, source_ids: Iterable[str]) -> Optional[SchemaBuild]:
        return self._entries.get(self.key(source_ids))

    def put(self, source_ids: Iterable[str], build: SchemaBuild):
        self._entries[self.key(source_ids)] = build

    def invalidate(self, source_ids: Optional[Iterable[str]] = None):
        """Drop one entry, or every entry when no source ids are given."""
        if source_ids is None:
            self._entries.clear()
        else:
            self._entries.pop(self.key(source_ids), None)

    def __contains__(self, source_ids) -> bool:
        return self.key(source_ids) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ReportBuilder:
    """Runs previews and exports for report requests."""

    def __init__(
        self,
        client: Any,
        config: Optional[Dict[str, Any]] = None,
        cache: Optional[SchemaCache] = None,
    ):
        """
        Initialize the report builder.

        Args:
            client: GraphClient used to read sources
            config: Configuration dictionary (default: loaded from config.yaml)
            cache: Schema cache shared across requests (default: a new one)
        """
        self.config = config if config is not None else load_config()
        self.collector = SourceCollector(client, self.config)
        self.exporter = ReportExporter(self.config)
        self.cache = cache if cache is not None else SchemaCache()

        self.type_resolution = get_type_resolution(self.config)
        self.low_coverage_threshold = get_low_coverage_threshold(self.config)
        self.strict = bool(self.config.get("normalization", {}).get("strict", False))
        self.include_provenance = bool(get_export_settings(self.config).get("include_provenance", False))

    def build_schema(self, refs: Sequence[SourceRef]) -> SchemaBuild:
        """
        Describe the sources and build their union schema.

        Builds where every source was described successfully are cached.
        """
        source_ids = [ref.source_id for ref in refs]
        cached = self.cache.get(source_ids)
        if cached is not None:
            logger.debug(f"Schema cache hit for {len(set(source_ids))} sources")
            return cached

        descriptors, source_results = self.collector.describe_sources(refs)
        schema = build_union_schema(collect_source_columns(descriptors), self.type_resolution)
        validation = validate_union_schema(schema, self.low_coverage_threshold)

        for message in validation.warnings:
            logger.warning(message)
        for message in validation.errors:
            logger.error(message)

        build = SchemaBuild(
            descriptors=descriptors,
            schema=schema,
            validation=validation,
            source_results=source_results,
        )
        if not build.failed_sources:
            self.cache.put(source_ids, build)
        return build

    def preview(self, request: ReportRequest) -> PreviewResult:
        """
        Fetch a bounded sample of rows for on-screen preview.

        Each source contributes at most ceil(limit / sources) rows; the search
        is applied before the result is cut to `limit` rows.
        """
        build = self.build_schema(request.sources)
        if not build.descriptors:
            return PreviewResult(
                rows=[],
                union_schema=build.schema,
                validation=build.validation,
                total_rows=0,
                has_more=False,
            )

        per_source = math.ceil(request.limit / len(build.descriptors))
        normalizer = RowNormalizer(build.schema, strict=self.strict)
        collected = self.collector.collect_rows(
            build.descriptors, normalizer, per_source_limit=per_source
        )
        rows = filter_rows(collected.rows, request.search)

        return PreviewResult(
            rows=rows[:request.limit],
            union_schema=build.schema,
            validation=build.validation,
            total_rows=len(rows),
            has_more=len(rows) > request.limit,
        )

    def export(self, request: ReportRequest) -> ExportResult:
        """
        Fetch every row of the selected sources and render the export file.

        Args:
            request: Sources, optional projection and search, and format

        Returns:
            ExportResult with the file content and the ReportRun record
        """
        started = datetime.now()
        run = ReportRun(
            run_id=generate_run_id(),
            started_at=started.isoformat(),
        )
        logger.info(f"Starting export run {run.run_id} for {len(request.sources)} sources")

        build = self.build_schema(request.sources)
        run.source_count = len(build.descriptors)
        run.validation = build.validation
        run.source_results = dict(build.source_results)

        normalizer = RowNormalizer(build.schema, strict=self.strict)
        collected = self.collector.collect_rows(build.descriptors, normalizer)
        run.source_results.update(collected.source_results)
        run.truncated = collected.truncated
        run.warnings.extend(collected.warnings)
        run.coercion_issues = list(normalizer.issues)

        rows = filter_rows(collected.rows, request.search)
        run.row_count = len(rows)

        payload = build_export_payload(
            build.schema,
            rows,
            columns=request.columns,
            include_provenance=self.include_provenance,
        )
        content = self.exporter.export(payload, request.format, include_schema=request.include_schema)
        filename = generate_export_filename(request.format)
        run.output_artifacts[request.format] = filename

        for source_id, result in run.source_results.items():
            run.errors.extend(f"{source_id}: {e}" for e in result.errors)

        failed = [sid for sid, r in run.source_results.items() if r.status == "failed"]
        requested = {ref.source_id for ref in request.sources}
        if requested and len(set(failed)) >= len(requested):
            run.status = "failed"
        elif failed:
            run.status = "partial"
        else:
            run.status = "completed"

        completed = datetime.now()
        run.completed_at = completed.isoformat()
        run.duration_seconds = (completed - started).total_seconds()

        logger.info(
            f"Export run {run.run_id} {run.status}: {run.row_count} rows, "
            f"{len(payload.columns)} columns, {len(failed)} failed sources"
        )

        return ExportResult(
            content=content,
            filename=filename,
            content_type=CONTENT_TYPES[request.format],
            run=run,
        )
