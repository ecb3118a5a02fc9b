"""
Tests for the Microsoft Graph client (HTTP mocked, no network).
"""

from unittest.mock import Mock, patch

import pytest
import requests

from agents.union_report.src.graph_client import (
    GraphApiError,
    GraphClient,
    RetryPolicy,
    SharePointList,
    column_from_graph,
    column_type_from_graph,
    create_graph_client,
    to_raw_record,
)
from agents.union_report.src.models import ColumnType

SLEEP = "agents.union_report.src.graph_client.time.sleep"


def fake_response(status_code=200, payload=None, headers=None):
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.ok = status_code < 400
    response.headers = headers or {}
    response.text = str(payload)
    response.json.return_value = payload if payload is not None else {}
    return response


def make_client(*responses, max_attempts=3):
    session = requests.Session()
    session.get = Mock(side_effect=list(responses))
    client = GraphClient(
        "token-123",
        retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay_s=0.5),
        session=session,
    )
    return client, session.get


def test_bearer_token_header():
    client, _ = make_client()
    assert client.session.headers["Authorization"] == "Bearer token-123"


def test_retries_429_honouring_retry_after():
    """429 with Retry-After sleeps that long and then succeeds."""
    client, get = make_client(
        fake_response(429, headers={"Retry-After": "2"}),
        fake_response(200, {"id": "s1", "displayName": "Ops", "webUrl": "https://x.test/ops"}),
    )

    with patch(SLEEP) as sleep:
        site = client.get_site("s1")

    assert site.display_name == "Ops"
    assert site.web_url == "https://x.test/ops"
    assert get.call_count == 2
    sleep.assert_called_once_with(2.0)


def test_retries_5xx_with_exponential_backoff_then_fails():
    """Persistent 503 exhausts the attempts and raises with the status code."""
    client, get = make_client(*[fake_response(503, {"error": "busy"}) for _ in range(3)])

    with patch(SLEEP) as sleep, pytest.raises(GraphApiError) as exc:
        client.get_site("s1")

    assert exc.value.status_code == 503
    assert get.call_count == 3
    assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]


def test_client_errors_are_not_retried():
    client, get = make_client(fake_response(404, {"error": "not found"}))

    with patch(SLEEP) as sleep, pytest.raises(GraphApiError) as exc:
        client.get_list("s1", "l1")

    assert exc.value.status_code == 404
    assert get.call_count == 1
    sleep.assert_not_called()


def test_connection_errors_are_retried():
    client, get = make_client(
        requests.ConnectionError("reset"),
        fake_response(200, {"value": []}),
    )

    with patch(SLEEP):
        assert client.get_lists("s1") == []

    assert get.call_count == 2


def test_connection_error_after_retries_raises_graph_error():
    client, _ = make_client(*[requests.Timeout("slow") for _ in range(3)])

    with patch(SLEEP), pytest.raises(GraphApiError):
        client.search_sites("ops")


def test_retry_policy_delay_is_capped():
    policy = RetryPolicy(base_delay_s=1.0, max_delay_s=5.0)
    assert [policy.get_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


@pytest.mark.parametrize("column,expected", [
    ({"text": {}}, ColumnType.TEXT),
    ({"number": {"decimalPlaces": "two"}}, ColumnType.NUMBER),
    ({"currency": {"locale": "en-us"}}, ColumnType.CURRENCY),
    ({"dateTime": {"format": "dateOnly"}}, ColumnType.DATETIME),
    ({"boolean": {}}, ColumnType.BOOLEAN),
    ({"choice": {"choices": ["A"]}}, ColumnType.CHOICE),
    ({"lookup": {"listId": "x"}}, ColumnType.LOOKUP),
    ({"personOrGroup": {}}, ColumnType.PERSON),
    ({"calculated": {"formula": "=1"}}, ColumnType.CALCULATED),
    ({"term": {}}, ColumnType.TAXONOMY),
    ({"hyperlinkOrPicture": {"isPicture": False}}, ColumnType.URL),
    ({"thumbnail": {}}, ColumnType.UNKNOWN),
    ({}, ColumnType.UNKNOWN),
])
def test_column_type_mapping(column, expected):
    assert column_type_from_graph(column) == expected


def test_column_from_graph():
    column = column_from_graph({
        "id": "c1",
        "name": "AssignedTo",
        "displayName": "Assigned To",
        "required": True,
        "personOrGroup": {},
    })

    assert column.name == "AssignedTo"
    assert column.display_name == "Assigned To"
    assert column.type == ColumnType.PERSON
    assert column.required is True
    assert column.hidden is False


def test_get_list_columns():
    client, get = make_client(fake_response(200, {"value": [
        {"id": "1", "name": "Title", "displayName": "Title", "text": {}},
        {"id": "2", "name": "Amount", "displayName": "Amount", "currency": {}},
    ]}))

    columns = client.get_list_columns("s1", "l1")

    assert [(c.name, c.type) for c in columns] == [("Title", ColumnType.TEXT), ("Amount", ColumnType.CURRENCY)]
    assert get.call_args.args[0].endswith("/sites/s1/lists/l1/columns")


def test_list_type_from_template():
    library = SharePointList.from_api({"id": "l1", "displayName": "Documents", "baseTemplate": 101})
    graph_library = SharePointList.from_api({"id": "l2", "displayName": "Docs", "list": {"template": "documentLibrary"}})
    generic = SharePointList.from_api({"id": "l3", "displayName": "Tasks", "list": {"template": "genericList", "itemCount": 12}})

    assert library.list_type == "library"
    assert graph_library.list_type == "library"
    assert generic.list_type == "list"
    assert generic.item_count == 12


def test_item_count_is_zero_on_failure():
    client, _ = make_client(fake_response(403, {"error": "denied"}))
    assert client.get_list_item_count("s1", "l1") == 0


def test_get_list_items_expands_fields_and_follows_next_link():
    """Items pages follow @odata.nextLink until exhausted."""
    next_link = "https://graph.microsoft.com/v1.0/sites/s1/lists/l1/items?$skiptoken=abc"
    client, get = make_client(
        fake_response(200, {"value": [{"id": "1"}, {"id": "2"}], "@odata.nextLink": next_link}),
        fake_response(200, {"value": [{"id": "3"}]}),
    )

    items = list(client.iter_list_items("s1", "l1", page_size=2, select=["Title", "Amount"]))

    assert [i["id"] for i in items] == ["1", "2", "3"]
    first_call, second_call = get.call_args_list
    assert first_call.kwargs["params"] == {"$expand": "fields($select=Title,Amount)", "$top": 2}
    assert second_call.args[0] == next_link
    assert second_call.kwargs["params"] is None


def test_get_list_items_single_page():
    client, get = make_client(fake_response(200, {"value": [{"id": "1"}]}))

    page = client.get_list_items("s1", "l1", top=50)

    assert page.has_more is False
    assert page.next_link is None
    assert get.call_args.kwargs["params"] == {"$expand": "fields", "$top": 50}


def test_to_raw_record():
    record = to_raw_record({"id": "1", "webUrl": "https://x.test/1", "fields": {"Title": "A", "Amount": 3}})
    assert record == {"Title": "A", "Amount": 3, "webUrl": "https://x.test/1"}
    assert to_raw_record({"id": "2"}) == {}


def test_create_graph_client_from_config():
    config = {"graph": {"base_url": "https://graph.example/v1.0/", "timeout_seconds": 5, "retry": {"max_attempts": 2}}}

    client = create_graph_client("tok", config)

    assert client.base_url == "https://graph.example/v1.0"
    assert client.timeout_s == 5.0
    assert client.retry_policy.max_attempts == 2
    assert client.retry_policy.retry_on_status == [429, 500, 502, 503, 504]
