"""
Stage 1: Source Collection

Describes the selected SharePoint lists/libraries (site, list metadata and
column definitions) and pages through their items.

Sources are processed sequentially. A source that fails is logged, recorded
in its StageResult and skipped; the remaining sources still contribute.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence, Tuple

from ..graph_client import to_raw_record
from ..models import (
    NormalizedRow,
    SourceDescriptor,
    SourceRef,
    StageResult,
)
from ..utils.config_loader import get_collection_settings, get_graph_settings
from ..utils.id_generator import generate_source_id
from .stage3_normalization import RowNormalizer

logger = logging.getLogger(__name__)


@dataclass
class CollectionResult:
    """Normalized rows gathered from every source."""
    rows: List[NormalizedRow] = field(default_factory=list)
    source_results: Dict[str, StageResult] = field(default_factory=dict)
    truncated: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def failed_sources(self) -> List[str]:
        return [sid for sid, r in self.source_results.items() if r.status == "failed"]


class SourceCollector:
    """Reads source metadata and items through a Graph client."""

    def __init__(self, client: Any, config: Optional[Dict[str, Any]] = None):
        """
        Initialize Source Collection stage.

        Args:
            client: GraphClient (or any object with the same discovery and
                item methods)
            config: Configuration dictionary
        """
        self.client = client
        self.config = config or {}
        self.collection_config = get_collection_settings(self.config)
        self.page_size = int(get_graph_settings(self.config).get("page_size", 200))
        self.export_page_size = int(self.collection_config.get("export_page_size", 1000))
        self.max_rows = int(self.collection_config.get("max_rows", 100000))

    def describe_source(self, ref: SourceRef) -> SourceDescriptor:
        """
        Read site, list and column metadata for one source.

        Raises:
            GraphApiError: If any metadata request fails
        """
        site = self.client.get_site(ref.site_id)
        lst = self.client.get_list(ref.site_id, ref.list_id)
        columns = self.client.get_list_columns(ref.site_id, ref.list_id)

        return SourceDescriptor(
            source_id=generate_source_id(ref.site_id, ref.list_id),
            site_id=ref.site_id,
            site_url=site.web_url,
            site_title=site.display_name,
            list_id=ref.list_id,
            list_title=lst.display_name,
            list_type=lst.list_type,
            item_count=lst.item_count,
            columns=columns,
        )

    def describe_sources(
        self,
        refs: Sequence[SourceRef],
    ) -> Tuple[List[SourceDescriptor], Dict[str, StageResult]]:
        """
        Describe every requested source, isolating failures.

        Args:
            refs: Sources to describe (duplicates are read once)

        Returns:
            Tuple of (descriptors for the sources that succeeded,
            source_id -> StageResult for every requested source)
        """
        descriptors: List[SourceDescriptor] = []
        results: Dict[str, StageResult] = {}

        for ref in refs:
            if ref.source_id in results:
                continue
            try:
                descriptor = self.describe_source(ref)
            except Exception as e:
                logger.error(f"Error describing source {ref.source_id}: {e}")
                results[ref.source_id] = StageResult(status="failed", errors=[str(e)])
                continue

            descriptors.append(descriptor)
            results[ref.source_id] = StageResult(
                status="completed",
                metadata={
                    "source_name": descriptor.source_name,
                    "list_type": descriptor.list_type,
                    "item_count": descriptor.item_count,
                    "column_count": len(descriptor.columns),
                },
            )
            logger.info(f"Described {descriptor.source_name}: {len(descriptor.columns)} columns")

        return descriptors, results

    def _fetch_source(
        self,
        descriptor: SourceDescriptor,
        normalizer: RowNormalizer,
        limit: int,
        page_size: int,
        rows: List[NormalizedRow],
    ) -> bool:
        """Append up to `limit` normalized rows from one source. Returns True if more remain."""
        provenance = descriptor.provenance()
        fetched = 0
        page = self.client.get_list_items(
            descriptor.site_id, descriptor.list_id, top=min(page_size, limit)
        )
        while True:
            for item in page.items:
                if fetched >= limit:
                    return True
                rows.append(normalizer.normalize(to_raw_record(item), provenance))
                fetched += 1
            if not page.has_more:
                return False
            if fetched >= limit:
                return True
            page = self.client.get_list_items(
                descriptor.site_id, descriptor.list_id, next_link=page.next_link
            )

    def collect_rows(
        self,
        descriptors: Sequence[SourceDescriptor],
        normalizer: RowNormalizer,
        max_rows: Optional[int] = None,
        per_source_limit: Optional[int] = None,
    ) -> CollectionResult:
        """
        Fetch and normalize the items of every source.

        Args:
            descriptors: Sources to read, in order
            normalizer: RowNormalizer bound to the union schema
            max_rows: Global safety cap across all sources (default from config)
            per_source_limit: Row limit per source, used by previews

        Returns:
            CollectionResult with rows in source order; `truncated` is set
            when the global cap cut the result short
        """
        max_rows = self.max_rows if max_rows is None else max_rows
        page_size = self.page_size if per_source_limit else self.export_page_size
        result = CollectionResult()

        for descriptor in descriptors:
            source_id = descriptor.source_id
            remaining = max_rows - len(result.rows)
            if remaining <= 0:
                message = f"{source_id}: row cap of {max_rows} reached before this source was read"
                logger.warning(message)
                result.truncated = True
                result.warnings.append(message)
                result.source_results[source_id] = StageResult(status="skipped", warnings=[message])
                continue

            limit = remaining if per_source_limit is None else min(per_source_limit, remaining)
            before = len(result.rows)
            try:
                more = self._fetch_source(descriptor, normalizer, limit, page_size, result.rows)
            except Exception as e:
                fetched = len(result.rows) - before
                logger.error(f"Error fetching items from {source_id} after {fetched} rows: {e}")
                result.source_results[source_id] = StageResult(
                    status="failed", errors=[str(e)], metadata={"rows": fetched}
                )
                continue

            fetched = len(result.rows) - before
            stage = StageResult(status="completed", metadata={"rows": fetched})
            if more and len(result.rows) >= max_rows:
                result.truncated = True
                message = f"{source_id}: row cap of {max_rows} reached, results truncated"
                logger.warning(message)
                stage.warnings.append(message)
                result.warnings.append(message)
            result.source_results[source_id] = stage
            logger.info(f"Fetched {fetched} rows from {descriptor.source_name}")

        return result

