"""
Stage 4: Export

Renders normalized rows and the union schema as CSV or as a three-sheet
Excel workbook (Data, Schema Map, Source Coverage).
"""

import io
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence

import pandas as pd
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from ..models import (
    PROVENANCE_FIELDS,
    ColumnType,
    ExportColumn,
    ExportPayload,
    NormalizedRow,
    UnionSchema,
    UnionSchemaColumn,
)
from ..utils.config_loader import get_export_settings, get_low_coverage_threshold
from ..utils.formatting import flatten_value, sanitize_for_excel

logger = logging.getLogger(__name__)

DATA_SHEET = "Data"
SCHEMA_SHEET = "Schema Map"
COVERAGE_SHEET = "Source Coverage"

SCHEMA_HEADERS = ["Column Name", "Type", "Coverage %", "Sources Count", "Notes"]
PARTIAL_COVERAGE_NOTE = "Partial coverage - may contain null values"

PRESENT_MARK = "✓"
ABSENT_MARK = "✗"

CONTENT_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

# ARGB colours
HEADER_FILL = PatternFill("solid", fgColor="FF366EF0")
HEADER_FONT = Font(bold=True, color="FFFFFFFF")
RED_FILL = PatternFill("solid", fgColor="FFFF6B6B")
AMBER_FILL = PatternFill("solid", fgColor="FFFFD93D")
GREEN_FILL = PatternFill("solid", fgColor="FF6BCF7F")
PRESENT_FONT = Font(color="FF2D5A27")
ABSENT_FONT = Font(color="FF8B0000")

NUMBER_FORMATS = {
    ColumnType.CURRENCY: "$#,##0.00",
    ColumnType.NUMBER: "#,##0.00",
    ColumnType.DATETIME: "yyyy-mm-dd hh:mm:ss",
}


def _column_notes(column: UnionSchemaColumn) -> str:
    notes = []
    if not column.is_complete:
        notes.append(PARTIAL_COVERAGE_NOTE)
    if column.has_conflicts:
        conflicts = ", ".join(f"{tc.source_id}:{tc.type.value}" for tc in column.type_conflicts)
        notes.append(f"Type conflicts: {conflicts}")
    return "; ".join(notes)


def build_export_payload(
    schema: UnionSchema,
    rows: List[NormalizedRow],
    columns: Optional[Sequence[str]] = None,
    include_provenance: bool = False,
) -> ExportPayload:
    """
    Build the exporter contract from a union schema and normalized rows.

    Args:
        schema: Union schema the rows were normalized against
        rows: Normalized rows
        columns: Optional projection by label, internal name or display
            name, in output order. Unknown names are ignored; an empty
            projection keeps every column.
        include_provenance: Prepend the provenance fields to the data columns

    Returns:
        ExportPayload whose schema and coverage matrix are aligned
    """
    selected = list(range(len(schema.columns)))
    if columns:
        projected: List[int] = []
        for key in columns:
            column = schema.column(key)
            if column is None:
                logger.warning(f"Ignoring unknown export column '{key}'")
                continue
            index = schema.columns.index(column)
            if index not in projected:
                projected.append(index)
        if projected:
            selected = projected

    export_columns: List[ExportColumn] = []
    matrix: List[List[bool]] = []
    for index in selected:
        column = schema.columns[index]
        export_columns.append(ExportColumn(
            display_name=column.label,
            type=column.type,
            coverage=column.coverage,
            sources_count=len(column.sources),
            notes=_column_notes(column),
        ))
        matrix.append(list(schema.coverage_matrix.matrix[index]))

    provenance_fields = list(PROVENANCE_FIELDS) if include_provenance else []
    keys = provenance_fields + [c.display_name for c in export_columns]
    projected_rows = [{key: row.get(key) for key in keys} for row in rows]

    return ExportPayload(
        rows=projected_rows,
        columns=export_columns,
        source_names=list(schema.coverage_matrix.source_names),
        coverage_matrix=matrix,
        provenance_fields=provenance_fields,
    )


def _excel_datetime(value: Any) -> Any:
    """ISO timestamp -> naive UTC datetime so Excel can apply a date format."""
    if not isinstance(value, str) or not value:
        return value
    try:
        return pd.Timestamp(value).tz_convert(None).to_pydatetime()
    except (ValueError, TypeError):
        return value


class ReportExporter:
    """Renders an ExportPayload as CSV or XLSX bytes."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize Export stage.

        Args:
            config: Configuration dictionary
        """
        config = config or {}
        self.export_config = get_export_settings(config)
        self.sanitize_formulas = bool(self.export_config.get("sanitize_formulas", True))
        self.low_coverage_threshold = get_low_coverage_threshold(config)
        self.green_coverage_threshold = int(self.export_config.get("green_coverage_threshold", 90))

    def _cell(self, value: Any, column_type: ColumnType, for_excel: bool = False) -> Any:
        flat = flatten_value(value, column_type)
        # CSV keeps text verbatim; only workbook cells are guarded
        if for_excel and self.sanitize_formulas:
            return sanitize_for_excel(flat)
        return flat

    def _data_frame(self, payload: ExportPayload, for_excel: bool = False) -> pd.DataFrame:
        types = [ColumnType.TEXT] * len(payload.provenance_fields) + [c.type for c in payload.columns]
        headers = payload.headers

        records = []
        for row in payload.rows:
            record = []
            for key, column_type in zip(headers, types):
                cell = self._cell(row.get(key), column_type, for_excel)
                if for_excel and column_type == ColumnType.DATETIME:
                    cell = _excel_datetime(cell)
                record.append(cell)
            records.append(record)

        return pd.DataFrame(records, columns=headers)

    def to_csv(self, payload: ExportPayload) -> bytes:
        """
        Render the payload as UTF-8 CSV: one header row of column labels,
        one data row per normalized row.
        """
        if not payload.headers:
            return b""
        df = self._data_frame(payload)
        return df.to_csv(index=False).encode("utf-8")

    def to_xlsx(self, payload: ExportPayload, include_schema: bool = True) -> bytes:
        """
        Render the payload as an Excel workbook.

        Args:
            payload: Export contract
            include_schema: Add the Schema Map and Source Coverage sheets

        Returns:
            XLSX file content
        """
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            self._write_data_sheet(writer, payload)
            if include_schema:
                self._write_schema_sheet(writer, payload)
                self._write_coverage_sheet(writer, payload)
        return buffer.getvalue()

    def export(self, payload: ExportPayload, file_format: str, include_schema: bool = True) -> bytes:
        """Render the payload in the requested format ("csv" or "xlsx")."""
        if file_format == "csv":
            return self.to_csv(payload)
        if file_format == "xlsx":
            return self.to_xlsx(payload, include_schema=include_schema)
        raise ValueError(f"Unsupported export format: {file_format}")

    def write(self, payload: ExportPayload, output_path: str, include_schema: bool = True) -> Path:
        """Write the payload to a file; the format follows the file extension."""
        path = Path(output_path)
        file_format = path.suffix.lower().lstrip(".")
        content = self.export(payload, file_format, include_schema=include_schema)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.info(f"Wrote {len(payload.rows)} rows to {path}")
        return path

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------

    def _sheet(self, writer: pd.ExcelWriter, df: pd.DataFrame, name: str):
        df.to_excel(writer, sheet_name=name, index=False)
        if name not in writer.sheets:
            writer.book.create_sheet(name)
        return writer.book[name]

    @staticmethod
    def _style_header(ws, column_count: int):
        for col in range(1, column_count + 1):
            cell = ws.cell(row=1, column=col)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT

    def _write_data_sheet(self, writer: pd.ExcelWriter, payload: ExportPayload):
        df = self._data_frame(payload, for_excel=True)
        ws = self._sheet(writer, df, DATA_SHEET)
        headers = payload.headers
        if not headers:
            return

        self._style_header(ws, len(headers))
        types = [ColumnType.TEXT] * len(payload.provenance_fields) + [c.type for c in payload.columns]
        for index, (header, column_type) in enumerate(zip(headers, types), start=1):
            letter = get_column_letter(index)
            ws.column_dimensions[letter].width = min(max(len(header), 10), 30)
            number_format = NUMBER_FORMATS.get(column_type)
            if number_format:
                for row in range(2, ws.max_row + 1):
                    cell = ws.cell(row=row, column=index)
                    if isinstance(cell.value, (int, float, datetime)):
                        cell.number_format = number_format

        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}{ws.max_row}"
        ws.freeze_panes = "A2"

    def _coverage_fill(self, coverage: int) -> PatternFill:
        if coverage < self.low_coverage_threshold:
            return RED_FILL
        if coverage < self.green_coverage_threshold:
            return AMBER_FILL
        return GREEN_FILL

    def _write_schema_sheet(self, writer: pd.ExcelWriter, payload: ExportPayload):
        df = pd.DataFrame(
            [
                [
                    sanitize_for_excel(c.display_name),
                    c.type.value,
                    c.coverage,
                    c.sources_count,
                    c.notes,
                ]
                for c in payload.columns
            ],
            columns=SCHEMA_HEADERS,
        )
        ws = self._sheet(writer, df, SCHEMA_SHEET)
        self._style_header(ws, len(SCHEMA_HEADERS))

        for letter, width in zip("ABCDE", (25, 15, 12, 15, 40)):
            ws.column_dimensions[letter].width = width

        for offset, column in enumerate(payload.columns):
            ws.cell(row=offset + 2, column=3).fill = self._coverage_fill(column.coverage)

        ws.freeze_panes = "A2"

    def _write_coverage_sheet(self, writer: pd.ExcelWriter, payload: ExportPayload):
        headers = ["Column Name"] + [sanitize_for_excel(n) for n in payload.source_names]
        records = []
        for column, presence in zip(payload.columns, payload.coverage_matrix):
            marks = [PRESENT_MARK if present else ABSENT_MARK for present in presence]
            records.append([sanitize_for_excel(column.display_name)] + marks)

        df = pd.DataFrame(records, columns=headers)
        ws = self._sheet(writer, df, COVERAGE_SHEET)
        self._style_header(ws, len(headers))

        ws.column_dimensions["A"].width = 25
        for index, name in enumerate(payload.source_names, start=2):
            ws.column_dimensions[get_column_letter(index)].width = min(max(len(name), 8), 20)

        for row in ws.iter_rows(min_row=2, min_col=2):
            for cell in row:
                if cell.value == PRESENT_MARK:
                    cell.fill = GREEN_FILL
                    cell.font = PRESENT_FONT
                elif cell.value == ABSENT_MARK:
                    cell.fill = RED_FILL
                    cell.font = ABSENT_FONT

        ws.freeze_panes = "B2"
