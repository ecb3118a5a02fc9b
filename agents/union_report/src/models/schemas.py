"""
Data models and schemas for the Union Report Agent.
"""

from enum import Enum
from typing import Optional, List, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


# Provenance keys stamped on every normalized row
SOURCE_ID_FIELD = "_source_id"
SITE_URL_FIELD = "_site_url"
SITE_TITLE_FIELD = "_site_title"
LIST_TITLE_FIELD = "_list_title"
LIST_ID_FIELD = "_list_id"
ITEM_URL_FIELD = "_item_url"

PROVENANCE_FIELDS = (
    SOURCE_ID_FIELD,
    SITE_URL_FIELD,
    SITE_TITLE_FIELD,
    LIST_TITLE_FIELD,
    LIST_ID_FIELD,
    ITEM_URL_FIELD,
)

# A normalized row: union column label -> coerced value, plus provenance fields
NormalizedRow = Dict[str, Any]

# A raw list item: field key -> JSON-compatible value, plus optional webUrl
RawRecord = Dict[str, Any]


class _Contract(BaseModel):
    """Base for wire contracts that accept both snake_case and camelCase keys."""
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# COLUMN DEFINITIONS
# ============================================================================

class ColumnType(str, Enum):
    """Declared column types reported by the source provider."""
    TEXT = "text"
    NUMBER = "number"
    CURRENCY = "currency"
    DATETIME = "dateTime"
    BOOLEAN = "boolean"
    CHOICE = "choice"
    LOOKUP = "lookup"
    PERSON = "person"
    TAXONOMY = "taxonomy"
    URL = "url"
    CALCULATED = "calculated"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        return cls.UNKNOWN


class ColumnDefinition(_Contract):
    """Column descriptor as reported by a source. Immutable once read."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = ""
    name: str = Field("", description="Internal (stable) column name")
    display_name: str = Field("", alias="displayName")
    type: ColumnType = ColumnType.UNKNOWN
    required: bool = False
    hidden: bool = False
    description: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> Any:
        if value is None:
            return ColumnType.UNKNOWN
        if isinstance(value, str):
            return ColumnType(value)
        return value

    @property
    def grouping_key(self) -> str:
        """Join key across sources: internal name, falling back to display name."""
        return self.name or self.display_name or self.id


class SourceColumn(ColumnDefinition):
    """A column definition annotated with the source that owns it."""
    source_id: str = Field(..., alias="sourceId")
    source_name: str = Field("", alias="sourceName")


# ============================================================================
# UNION SCHEMA
# ============================================================================

class TypeConflict(_Contract):
    """A source whose declared type differs from the union's primary type."""
    source_id: str = Field(..., alias="sourceId")
    type: ColumnType

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> Any:
        return ColumnType(value) if isinstance(value, str) else value


class UnionSchemaColumn(ColumnDefinition):
    """One logical column unified across all sources."""
    sources: List[str] = Field(default_factory=list)
    coverage: int = Field(0, ge=0, le=100, description="Percentage of sources containing the column")
    type_conflicts: List[TypeConflict] = Field(default_factory=list, alias="typeConflicts")
    label: str = Field("", description="Unique key used in rows, the coverage matrix and exports")

    @property
    def has_conflicts(self) -> bool:
        return bool(self.type_conflicts)

    @property
    def is_complete(self) -> bool:
        return self.coverage == 100


class CoverageMatrix(_Contract):
    """Boolean grid addressed by [column_index][source_index]."""
    columns: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    source_names: List[str] = Field(default_factory=list, alias="sourceNames")
    matrix: List[List[bool]] = Field(default_factory=list)

    @property
    def shape(self) -> tuple[int, int]:
        return len(self.columns), len(self.sources)

    def has(self, column_index: int, source_index: int) -> bool:
        return self.matrix[column_index][source_index]


class UnionSchema(_Contract):
    """Unified schema for one report build. Never mutated after creation."""
    columns: List[UnionSchemaColumn] = Field(default_factory=list)
    total_sources: int = Field(0, alias="totalSources")
    total_columns: int = Field(0, alias="totalColumns")
    coverage_matrix: CoverageMatrix = Field(default_factory=CoverageMatrix, alias="coverageMatrix")

    @classmethod
    def empty(cls) -> "UnionSchema":
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.total_columns == 0

    def column(self, key: str) -> Optional[UnionSchemaColumn]:
        """Find a column by label, internal name or display name."""
        for attr in ("label", "name", "display_name"):
            for column in self.columns:
                if getattr(column, attr) == key:
                    return column
        return None


class ValidationIssue(BaseModel):
    """Result from a single schema validation rule."""
    rule_id: Literal["type_conflict", "low_coverage", "required_partial"]
    severity: Literal["warning", "error"]
    column: str
    message: str


class ValidationReport(BaseModel):
    """Advisory findings about a union schema. Never blocks processing."""
    issues: List[ValidationIssue] = Field(default_factory=list)

    @computed_field
    @property
    def warnings(self) -> List[str]:
        return [i.message for i in self.issues if i.severity == "warning"]

    @computed_field
    @property
    def errors(self) -> List[str]:
        return [i.message for i in self.issues if i.severity == "error"]


# ============================================================================
# NORMALIZATION
# ============================================================================

class SourceProvenance(_Contract):
    """Source-identifying metadata stamped on each normalized row."""
    source_id: str = Field(..., alias="sourceId")
    site_url: str = Field("", alias="siteUrl")
    site_title: str = Field("", alias="siteTitle")
    list_title: str = Field("", alias="listTitle")
    list_id: str = Field("", alias="listId")

    def as_row_fields(self) -> Dict[str, Any]:
        return {
            SOURCE_ID_FIELD: self.source_id,
            SITE_URL_FIELD: self.site_url,
            SITE_TITLE_FIELD: self.site_title,
            LIST_TITLE_FIELD: self.list_title,
            LIST_ID_FIELD: self.list_id,
        }


class LookupValue(_Contract):
    id: Optional[Any] = None
    title: Optional[str] = None


class PersonValue(_Contract):
    id: Optional[Any] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    email: Optional[str] = None


class TaxonomyValue(_Contract):
    label: Optional[str] = None
    term_guid: Optional[str] = Field(None, alias="termGuid")


class UrlValue(_Contract):
    url: Optional[str] = None
    description: Optional[str] = None


class CoercionIssue(BaseModel):
    """A field value that could not be coerced and was replaced with null."""
    source_id: str
    item_url: Optional[str] = None
    column: str
    target_type: ColumnType
    raw_value: Any = None
    reason: str


# ============================================================================
# SOURCES AND REQUESTS
# ============================================================================

class SourceRef(_Contract):
    """A list or library selected by the caller."""
    site_id: str = Field(..., alias="siteId")
    list_id: str = Field(..., alias="listId")

    @property
    def source_id(self) -> str:
        return f"{self.site_id}:{self.list_id}"


class SourceDescriptor(_Contract):
    """A discovered source with its column definitions."""
    source_id: str = Field(..., alias="sourceId")
    site_id: str = Field(..., alias="siteId")
    site_url: str = Field("", alias="siteUrl")
    site_title: str = Field("", alias="siteTitle")
    list_id: str = Field(..., alias="listId")
    list_title: str = Field("", alias="listTitle")
    list_type: Literal["list", "library"] = Field("list", alias="listType")
    item_count: int = Field(0, alias="itemCount")
    columns: List[ColumnDefinition] = Field(default_factory=list)

    @property
    def source_name(self) -> str:
        return f"{self.site_title} / {self.list_title}"

    def provenance(self) -> SourceProvenance:
        return SourceProvenance(
            source_id=self.source_id,
            site_url=self.site_url,
            site_title=self.site_title,
            list_title=self.list_title,
            list_id=self.list_id,
        )

    def source_columns(self) -> List[SourceColumn]:
        return [
            SourceColumn(
                **column.model_dump(),
                source_id=self.source_id,
                source_name=self.source_name,
            )
            for column in self.columns
        ]


class ReportRequest(_Contract):
    """Complete input contract for a preview or export."""
    sources: List[SourceRef] = Field(..., description="Lists/libraries to combine")
    columns: Optional[List[str]] = Field(None, description="Optional column projection")
    search: Optional[str] = Field(None, description="Literal substring search")
    format: Literal["csv", "xlsx"] = "xlsx"
    include_schema: bool = Field(True, alias="includeSchema")
    limit: int = Field(1000, ge=1, le=10000, description="Preview row limit")


# ============================================================================
# STAGE OUTPUTS
# ============================================================================

class StageResult(BaseModel):
    """Result from a single stage or source."""
    status: str
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PreviewResult(_Contract):
    """Rows and schema for an on-screen preview."""
    rows: List[NormalizedRow] = Field(default_factory=list)
    union_schema: UnionSchema = Field(..., alias="schema")
    validation: ValidationReport
    total_rows: int = Field(..., alias="totalRows")
    has_more: bool = Field(..., alias="hasMore")


# ============================================================================
# OUTPUT CONTRACTS
# ============================================================================

class ExportColumn(_Contract):
    """Column entry in the exporter contract."""
    display_name: str = Field(..., alias="displayName")
    type: ColumnType
    coverage: int
    sources_count: int = Field(0, alias="sourcesCount")
    notes: str = ""


class ExportPayload(_Contract):
    """Everything an exporter needs: union schema view plus normalized rows."""
    rows: List[NormalizedRow] = Field(default_factory=list)
    columns: List[ExportColumn] = Field(default_factory=list, alias="schema")
    source_names: List[str] = Field(default_factory=list, alias="sourceNames")
    coverage_matrix: List[List[bool]] = Field(default_factory=list, alias="coverageMatrix")
    provenance_fields: List[str] = Field(default_factory=list, alias="provenanceFields")

    @property
    def headers(self) -> List[str]:
        """Data sheet header: provenance fields (if any), then column labels."""
        return list(self.provenance_fields) + [c.display_name for c in self.columns]


class ReportRun(BaseModel):
    """Complete execution audit trail for one export."""
    schema_version: str = "1.0.0"
    run_id: str
    agent_name: str = "union_report_agent"
    agent_version: str = "1.0.0"
    started_at: str
    completed_at: Optional[str] = None
    duration_seconds: Optional[float] = None
    status: Literal["running", "completed", "partial", "failed"] = "running"
    source_count: int = 0
    row_count: int = 0
    truncated: bool = False
    validation: ValidationReport = Field(default_factory=ValidationReport)
    source_results: Dict[str, StageResult] = Field(default_factory=dict)
    coercion_issues: List[CoercionIssue] = Field(default_factory=list)
    output_artifacts: Dict[str, str] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
