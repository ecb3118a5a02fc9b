"""
Tests for Stage 3 row normalization, the coercion table and search.
"""

from unittest.mock import patch

import pytest

from agents.union_report.src.models import (
    ITEM_URL_FIELD,
    PROVENANCE_FIELDS,
    ColumnType,
    SourceProvenance,
)
from agents.union_report.src.stages.stage2_unification import build_union_schema
from agents.union_report.src.stages.stage3_normalization import (
    RowNormalizer,
    filter_rows,
    normalize_row,
)
from agents.union_report.src.utils.coercion import CoercionError, coerce_value
from conftest import make_column


@pytest.fixture
def provenance():
    return SourceProvenance(
        source_id="A",
        site_url="https://contoso.sharepoint.com/sites/ops",
        site_title="Ops",
        list_title="Tasks",
        list_id="tasks",
    )


@pytest.fixture
def schema():
    return build_union_schema([
        make_column("Title", "text", "A"),
        make_column("Amount", "currency", "A"),
        make_column("Due", "dateTime", "A", display_name="Due Date"),
        make_column("Done", "boolean", "A"),
        make_column("Owner", "person", "A"),
        make_column("Tags", "choice", "A"),
        make_column("Region", "text", "B"),
    ])


# ============================================================================
# COERCION TABLE
# ============================================================================

@pytest.mark.parametrize("raw,expected", [
    ("42.5", 42.5),
    (" 7 ", 7.0),
    (3, 3.0),
    (True, 1.0),
    (False, 0.0),
])
def test_number_coercion(raw, expected):
    assert coerce_value(raw, ColumnType.NUMBER) == expected
    assert coerce_value(raw, ColumnType.CURRENCY) == expected


@pytest.mark.parametrize("raw", ["abc", "", "inf", "NaN", {"value": 1}])
def test_number_coercion_failures_raise(raw):
    with pytest.raises(CoercionError):
        coerce_value(raw, ColumnType.NUMBER)


@pytest.mark.parametrize("raw,expected", [
    ("Yes", True),
    ("yes", True),
    (" TRUE ", True),
    ("1", True),
    ("no", False),
    ("false", False),
    ("0", False),
    ("", False),
    (True, True),
    (False, False),
    (1, True),
    (0, False),
])
def test_boolean_coercion(raw, expected):
    assert coerce_value(raw, ColumnType.BOOLEAN) is expected


@pytest.mark.parametrize("raw,expected", [
    ("2024-03-01T10:00:00Z", "2024-03-01T10:00:00.000Z"),
    ("2024-03-01 10:00:00", "2024-03-01T10:00:00.000Z"),
    ("2024-03-01T12:00:00+02:00", "2024-03-01T10:00:00.000Z"),
    ("2024-03-01T10:00:00.123456Z", "2024-03-01T10:00:00.123Z"),
    (0, "1970-01-01T00:00:00.000Z"),
])
def test_datetime_coercion(raw, expected):
    assert coerce_value(raw, ColumnType.DATETIME) == expected


@pytest.mark.parametrize("raw", ["not a date", True, {"date": "2024-01-01"}])
def test_datetime_coercion_failures_raise(raw):
    with pytest.raises(CoercionError):
        coerce_value(raw, ColumnType.DATETIME)


def test_choice_coercion():
    assert coerce_value("Open", ColumnType.CHOICE) == ["Open"]
    assert coerce_value(["Open", "Escalated"], ColumnType.CHOICE) == ["Open", "Escalated"]
    assert coerce_value(["Open", None], ColumnType.CHOICE) == ["Open"]
    assert coerce_value([None], ColumnType.CHOICE) == []


def test_text_coercion_stringifies():
    assert coerce_value(12, ColumnType.TEXT) == "12"


def test_structured_values_accept_alternate_key_spellings():
    """Lookup/person/taxonomy/url payloads arrive with varying key casing."""
    assert coerce_value({"LookupId": 3, "LookupValue": "Plant 3"}, ColumnType.LOOKUP) == {
        "id": 3, "title": "Plant 3",
    }
    assert coerce_value(
        {"LookupId": 7, "LookupValue": "Ann Lee", "Email": "ann@contoso.com"}, ColumnType.PERSON
    ) == {"id": 7, "displayName": "Ann Lee", "email": "ann@contoso.com"}
    assert coerce_value({"Label": "Europe", "TermGuid": "abc-123"}, ColumnType.TAXONOMY) == {
        "label": "Europe", "termGuid": "abc-123",
    }
    assert coerce_value({"Url": "https://x.test", "Description": "X"}, ColumnType.URL) == {
        "url": "https://x.test", "description": "X",
    }


def test_structured_scalar_input_is_stringified():
    assert coerce_value("Ann Lee", ColumnType.PERSON) == {"id": None, "displayName": "Ann Lee", "email": None}
    assert coerce_value(42, ColumnType.LOOKUP) == {"id": None, "title": "42"}
    assert coerce_value("https://x.test", ColumnType.URL) == {"url": "https://x.test", "description": None}


@pytest.mark.parametrize("column_type", list(ColumnType))
def test_none_stays_none_for_every_type(column_type):
    assert coerce_value(None, column_type) is None


def test_calculated_and_unknown_pass_through():
    payload = {"anything": [1, 2]}
    assert coerce_value(payload, ColumnType.CALCULATED) is payload
    assert coerce_value("x", ColumnType.UNKNOWN) == "x"


# ============================================================================
# ROW NORMALIZATION
# ============================================================================

def test_row_has_every_column_and_provenance(schema, provenance):
    """Every row carries one entry per union column plus the provenance fields."""
    raw = {"Title": "Fix pump", "webUrl": "https://contoso.sharepoint.com/item/1"}

    row = normalize_row(raw, schema, provenance)

    assert list(row)[:len(PROVENANCE_FIELDS)] == list(PROVENANCE_FIELDS)
    assert len(row) == schema.total_columns + len(PROVENANCE_FIELDS)
    assert row["_source_id"] == "A"
    assert row["_site_title"] == "Ops"
    assert row["_list_title"] == "Tasks"
    assert row[ITEM_URL_FIELD] == "https://contoso.sharepoint.com/item/1"
    assert row["Title"] == "Fix pump"
    assert row["Region"] is None


def test_column_named_like_provenance_keeps_stamp(provenance):
    """A list column called _source_id cannot overwrite the row's source."""
    schema = build_union_schema([make_column("_source_id", "text", "A"), make_column("Title", "text", "A")])

    row = normalize_row({"_source_id": "user value", "Title": "Fix pump"}, schema, provenance)

    assert row["_source_id"] == "A"
    assert row["_source_id (_source_id)"] == "user value"
    assert len(row) == schema.total_columns + len(PROVENANCE_FIELDS)


def test_values_coerced_to_union_type(schema, provenance):
    raw = {
        "Amount": "42.5",
        "Due": "2024-03-01T10:00:00Z",
        "Done": "Yes",
        "Owner": {"LookupId": 7, "LookupValue": "Ann Lee"},
        "Tags": "Urgent",
    }

    row = normalize_row(raw, schema, provenance)

    assert row["Amount"] == 42.5
    assert row["Due Date"] == "2024-03-01T10:00:00.000Z"
    assert row["Done"] is True
    assert row["Owner"] == {"id": 7, "displayName": "Ann Lee", "email": None}
    assert row["Tags"] == ["Urgent"]


def test_unparsable_value_degrades_to_none(schema, provenance):
    row = normalize_row({"Amount": "abc", "Due": "someday"}, schema, provenance)

    assert row["Amount"] is None
    assert row["Due Date"] is None


def test_lookup_by_display_name_when_internal_name_absent(schema, provenance):
    row = normalize_row({"Due Date": "2024-01-02T00:00:00Z"}, schema, provenance)
    assert row["Due Date"] == "2024-01-02T00:00:00.000Z"


def test_null_under_internal_name_falls_back_to_display_name(schema, provenance):
    row = normalize_row({"Due": None, "Due Date": "2024-01-02T00:00:00Z"}, schema, provenance)
    assert row["Due Date"] == "2024-01-02T00:00:00.000Z"


def test_empty_schema_row_has_only_provenance(provenance):
    row = normalize_row({"Title": "x"}, build_union_schema([]), provenance)
    assert set(row) == set(PROVENANCE_FIELDS)


def test_unexpected_coercion_error_degrades_to_none(schema, provenance):
    """Errors outside the coercion table never escape normalization."""
    with patch(
        "agents.union_report.src.stages.stage3_normalization.coerce_value",
        side_effect=RuntimeError("boom"),
    ):
        row = normalize_row({"Title": "Fix pump"}, schema, provenance)

    assert row["Title"] is None


def test_strict_mode_collects_issues(schema, provenance):
    """Strict mode records each value that became null; default mode does not."""
    raw = {"Amount": "abc", "Done": "yes", "webUrl": "https://x.test/1"}

    strict = RowNormalizer(schema, strict=True)
    strict.normalize(raw, provenance)

    assert len(strict.issues) == 1
    issue = strict.issues[0]
    assert issue.column == "Amount"
    assert issue.target_type == ColumnType.CURRENCY
    assert issue.raw_value == "abc"
    assert issue.source_id == "A"
    assert issue.item_url == "https://x.test/1"

    lenient = RowNormalizer(schema)
    lenient.normalize(raw, provenance)
    assert lenient.issues == []


def test_normalize_all(schema, provenance):
    rows = RowNormalizer(schema).normalize_all([{"Title": "a"}, {"Title": "b"}], provenance)
    assert [r["Title"] for r in rows] == ["a", "b"]


# ============================================================================
# SEARCH
# ============================================================================

def test_search_is_case_insensitive_substring(schema, provenance):
    rows = [
        normalize_row({"Title": "Fix PUMP"}, schema, provenance),
        normalize_row({"Title": "Order parts"}, schema, provenance),
    ]

    assert [r["Title"] for r in filter_rows(rows, "pump")] == ["Fix PUMP"]


def test_search_matches_structured_values(schema, provenance):
    rows = [
        normalize_row({"Owner": {"LookupValue": "Ann Lee"}}, schema, provenance),
        normalize_row({"Owner": {"LookupValue": "Bo"}}, schema, provenance),
    ]

    assert len(filter_rows(rows, "ann")) == 1


def test_search_is_literal(schema, provenance):
    rows = [normalize_row({"Title": "a.b"}, schema, provenance), normalize_row({"Title": "axb"}, schema, provenance)]
    assert [r["Title"] for r in filter_rows(rows, "a.b")] == ["a.b"]


@pytest.mark.parametrize("search", [None, "", "   "])
def test_blank_search_returns_all_rows(schema, provenance, search):
    rows = [normalize_row({"Title": "x"}, schema, provenance)]
    assert filter_rows(rows, search) == rows
