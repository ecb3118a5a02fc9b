"""Shared fixtures for Union Report Agent tests."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest

from agents.union_report.src.graph_client import (
    GraphApiError,
    ItemPage,
    SharePointList,
    SharePointSite,
)
from agents.union_report.src.models import ColumnDefinition, ColumnType, SourceColumn

SITE_ID = "contoso.sharepoint.com,1111,2222"
SITE_URL = "https://contoso.sharepoint.com/sites/ops"
TASKS_ID = f"{SITE_ID}:tasks"
ISSUES_ID = f"{SITE_ID}:issues"


def make_column(
    name: str,
    column_type: str,
    source_id: str = "A",
    display_name: Optional[str] = None,
    required: bool = False,
    hidden: bool = False,
    source_name: Optional[str] = None,
) -> SourceColumn:
    """Build a SourceColumn with sensible defaults."""
    return SourceColumn(
        id=f"{source_id}-{name}",
        name=name,
        display_name=display_name if display_name is not None else name,
        type=column_type,
        required=required,
        hidden=hidden,
        source_id=source_id,
        source_name=source_name or f"Site / {source_id}",
    )


def column_def(name: str, column_type: str, required: bool = False) -> ColumnDefinition:
    return ColumnDefinition(id=name.lower(), name=name, display_name=name, type=column_type, required=required)


@dataclass
class FakeSource:
    """An in-memory SharePoint list."""
    site_id: str
    list_id: str
    site_title: str
    list_title: str
    columns: List[ColumnDefinition]
    items: List[Dict[str, Any]] = field(default_factory=list)
    site_url: str = SITE_URL
    base_template: int = 100
    fail_describe: bool = False
    fail_items_after: Optional[int] = None

    @property
    def source_id(self) -> str:
        return f"{self.site_id}:{self.list_id}"


class FakeGraphClient:
    """Stands in for GraphClient; pages with fake continuation links."""

    def __init__(self, sources: List[FakeSource]):
        self.sources = {s.source_id: s for s in sources}
        self.calls = Counter()

    def _source(self, site_id: str, list_id: str) -> FakeSource:
        source = self.sources.get(f"{site_id}:{list_id}")
        if source is None:
            raise GraphApiError(f"List {list_id} not found", status_code=404)
        return source

    def get_site(self, site_id: str) -> SharePointSite:
        self.calls["get_site"] += 1
        for source in self.sources.values():
            if source.site_id == site_id:
                return SharePointSite(id=site_id, display_name=source.site_title, web_url=source.site_url)
        raise GraphApiError(f"Site {site_id} not found", status_code=404)

    def get_list(self, site_id: str, list_id: str) -> SharePointList:
        self.calls["get_list"] += 1
        source = self._source(site_id, list_id)
        return SharePointList(
            id=list_id,
            display_name=source.list_title,
            base_template=source.base_template,
            item_count=len(source.items),
        )

    def get_list_columns(self, site_id: str, list_id: str) -> List[ColumnDefinition]:
        self.calls["get_list_columns"] += 1
        source = self._source(site_id, list_id)
        if source.fail_describe:
            raise GraphApiError("Access denied", status_code=403)
        return list(source.columns)

    def get_list_items(self, site_id, list_id, top=200, select=None, next_link=None) -> ItemPage:
        self.calls["get_list_items"] += 1
        offset = 0
        if next_link:
            site_id, list_id, offset, top = next_link[len("fake://"):].split("/")
            offset, top = int(offset), int(top)

        source = self._source(site_id, list_id)
        if source.fail_items_after is not None and offset >= source.fail_items_after:
            raise GraphApiError("Service unavailable", status_code=503)

        end = offset + top
        has_more = end < len(source.items)
        link = f"fake://{site_id}/{list_id}/{end}/{top}" if has_more else None
        return ItemPage(items=source.items[offset:end], has_more=has_more, next_link=link)


def graph_item(index: int, fields: Dict[str, Any], list_id: str = "tasks") -> Dict[str, Any]:
    return {
        "id": str(index),
        "webUrl": f"{SITE_URL}/Lists/{list_id}/DispForm.aspx?ID={index}",
        "fields": fields,
    }


def tasks_source(**overrides) -> FakeSource:
    params = dict(
        site_id=SITE_ID,
        list_id="tasks",
        site_title="Ops",
        list_title="Tasks",
        columns=[
            column_def("Title", "text", required=True),
            column_def("Amount", "currency"),
            column_def("Owner", "person", required=True),
            column_def("Done", "boolean"),
        ],
        items=[
            graph_item(1, {
                "Title": "Fix pump",
                "Amount": "42.5",
                "Owner": {"LookupId": 7, "LookupValue": "Ann Lee", "Email": "ann@contoso.com"},
                "Done": "Yes",
            }),
            graph_item(2, {"Title": "Order parts", "Amount": "abc", "Done": False}),
            graph_item(3, {"Title": "Inspect valve", "Amount": 100, "Owner": {"LookupValue": "Bo"}, "Done": "1"}),
        ],
    )
    params.update(overrides)
    return FakeSource(**params)


def issues_source(**overrides) -> FakeSource:
    params = dict(
        site_id=SITE_ID,
        list_id="issues",
        site_title="Ops",
        list_title="Issues",
        columns=[
            column_def("Title", "text", required=True),
            column_def("Amount", "text"),
            column_def("Status", "choice"),
        ],
        items=[
            graph_item(1, {"Title": "Leak", "Amount": "n/a", "Status": "Open"}, list_id="issues"),
            graph_item(2, {"Title": "Noise", "Status": ["Open", "Escalated"]}, list_id="issues"),
        ],
    )
    params.update(overrides)
    return FakeSource(**params)


@pytest.fixture
def fake_client():
    """Graph client with a Tasks list (3 items) and an Issues list (2 items)."""
    return FakeGraphClient([tasks_source(), issues_source()])


@pytest.fixture
def small_pages_config():
    """Config that forces multi-page reads."""
    return {
        "graph": {"page_size": 2},
        "collection": {"export_page_size": 2, "max_rows": 100000},
    }


@pytest.fixture
def two_source_columns():
    """Two sources sharing Title/Amount with an Amount type conflict."""
    return [
        make_column("Title", "text", "A", required=True),
        make_column("Amount", ColumnType.CURRENCY, "A"),
        make_column("Owner", "person", "A", required=True),
        make_column("Title", "text", "B", required=True),
        make_column("Amount", "text", "B"),
    ]
