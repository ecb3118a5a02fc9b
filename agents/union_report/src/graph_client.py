"""
Microsoft Graph Client for Union Report Agent

Discovers SharePoint sites, lists and column definitions, and pages through
list items, using a caller-supplied bearer token.

Transient failures (429 and 5xx responses, connection errors, timeouts) are
retried with exponential backoff; every other failure surfaces as
GraphApiError.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Generator

import requests

from .models import ColumnDefinition, ColumnType, RawRecord
from .utils.config_loader import get_graph_settings

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

# SharePoint base template of a document library
DOCUMENT_LIBRARY_TEMPLATE = 101

# Graph column facet -> ColumnType, checked in order
COLUMN_FACETS = [
    ("text", ColumnType.TEXT),
    ("number", ColumnType.NUMBER),
    ("currency", ColumnType.CURRENCY),
    ("dateTime", ColumnType.DATETIME),
    ("boolean", ColumnType.BOOLEAN),
    ("choice", ColumnType.CHOICE),
    ("lookup", ColumnType.LOOKUP),
    ("personOrGroup", ColumnType.PERSON),
    ("calculated", ColumnType.CALCULATED),
    ("term", ColumnType.TAXONOMY),
    ("hyperlinkOrPicture", ColumnType.URL),
]


class GraphApiError(Exception):
    """Raised when a Graph request fails after retries."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""
    max_attempts: int = 4
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    exponential_base: float = 2.0
    retry_on_status: List[int] = field(default_factory=lambda: [429, 500, 502, 503, 504])

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number."""
        delay = self.base_delay_s * (self.exponential_base ** (attempt - 1))
        return min(delay, self.max_delay_s)

    @classmethod
    def from_config(cls, retry_config: Dict[str, Any]) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, int(retry_config.get("max_attempts", cls.max_attempts))),
            base_delay_s=float(retry_config.get("base_delay_seconds", cls.base_delay_s)),
            max_delay_s=float(retry_config.get("max_delay_seconds", cls.max_delay_s)),
            retry_on_status=list(retry_config.get("retry_on_status", [429, 500, 502, 503, 504])),
        )


@dataclass
class SharePointSite:
    """A SharePoint site."""
    id: str
    display_name: str
    web_url: str = ""
    description: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "SharePointSite":
        return cls(
            id=payload.get("id", ""),
            display_name=payload.get("displayName") or payload.get("name") or "",
            web_url=payload.get("webUrl", ""),
            description=payload.get("description"),
        )


@dataclass
class SharePointList:
    """A list or document library within a site."""
    id: str
    display_name: str
    web_url: str = ""
    description: Optional[str] = None
    base_template: Optional[int] = None
    template: Optional[str] = None
    item_count: int = 0

    @property
    def list_type(self) -> str:
        if self.base_template == DOCUMENT_LIBRARY_TEMPLATE or self.template == "documentLibrary":
            return "library"
        return "list"

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "SharePointList":
        list_info = payload.get("list") or {}
        return cls(
            id=payload.get("id", ""),
            display_name=payload.get("displayName") or payload.get("name") or "",
            web_url=payload.get("webUrl", ""),
            description=payload.get("description"),
            base_template=payload.get("baseTemplate"),
            template=list_info.get("template"),
            item_count=int(list_info.get("itemCount") or 0),
        )


@dataclass
class ItemPage:
    """One page of list items."""
    items: List[Dict[str, Any]]
    has_more: bool
    next_link: Optional[str] = None


def column_type_from_graph(column: Dict[str, Any]) -> ColumnType:
    """Map a Graph columnDefinition to a ColumnType by its type facet."""
    for facet, column_type in COLUMN_FACETS:
        if column.get(facet) is not None:
            return column_type
    return ColumnType.UNKNOWN


def column_from_graph(column: Dict[str, Any]) -> ColumnDefinition:
    return ColumnDefinition(
        id=column.get("id", ""),
        name=column.get("name", ""),
        display_name=column.get("displayName") or column.get("name", ""),
        type=column_type_from_graph(column),
        required=bool(column.get("required", False)),
        hidden=bool(column.get("hidden", False)),
        description=column.get("description") or None,
    )


def to_raw_record(item: Dict[str, Any]) -> RawRecord:
    """Flatten a Graph list item into its field values plus webUrl."""
    record: RawRecord = dict(item.get("fields") or {})
    if item.get("webUrl"):
        record["webUrl"] = item["webUrl"]
    return record


class GraphClient:
    """
    Microsoft Graph client for SharePoint discovery and item retrieval.

    Usage:
        client = GraphClient(access_token)

        for item in client.iter_list_items(site_id, list_id):
            print(item["fields"])
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = GRAPH_BASE_URL,
        timeout_s: float = 30,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the Graph client.

        Args:
            access_token: OAuth bearer token with Sites.Read.All
            base_url: Graph API root
            timeout_s: Per-request timeout in seconds
            retry_policy: Retry configuration (default: RetryPolicy())
            session: Optional requests session (for connection reuse or tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.retry_policy = retry_policy or RetryPolicy()
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        })

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _retry_delay(self, response: requests.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(float(retry_after), self.retry_policy.max_delay_s)
            except ValueError:
                pass
        return self.retry_policy.get_delay(attempt)

    def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a Graph resource with retry logic."""
        url = self._url(path)
        policy = self.retry_policy

        for attempt in range(1, policy.max_attempts + 1):
            try:
                response = self.session.get(url, params=params, timeout=self.timeout_s)
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt < policy.max_attempts:
                    delay = policy.get_delay(attempt)
                    logger.warning(f"Network error on {url} (attempt {attempt}), retrying in {delay:.1f}s: {e}")
                    time.sleep(delay)
                    continue
                raise GraphApiError(f"Request to {url} failed: {e}") from e

            if response.status_code in policy.retry_on_status and attempt < policy.max_attempts:
                delay = self._retry_delay(response, attempt)
                logger.warning(
                    f"Graph returned {response.status_code} for {url} "
                    f"(attempt {attempt}), retrying in {delay:.1f}s"
                )
                time.sleep(delay)
                continue

            if not response.ok:
                raise GraphApiError(
                    f"Graph request to {url} failed with {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                )

            try:
                return response.json()
            except ValueError as e:
                raise GraphApiError(f"Invalid JSON from {url}: {e}", status_code=response.status_code) from e

        raise GraphApiError(f"Request to {url} was not attempted")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def search_sites(self, query: str = "") -> List[SharePointSite]:
        """Search sites by keyword (empty query lists all visible sites)."""
        resp = self._request("sites", params={
            "search": query,
            "$select": "id,webUrl,displayName,description",
            "$top": 50,
        })
        return [SharePointSite.from_api(s) for s in resp.get("value", [])]

    def get_site(self, site_id: str) -> SharePointSite:
        resp = self._request(f"sites/{site_id}", params={"$select": "id,webUrl,displayName,description"})
        return SharePointSite.from_api(resp)

    def get_lists(self, site_id: str) -> List[SharePointList]:
        """Get the non-hidden lists and libraries of a site."""
        resp = self._request(f"sites/{site_id}/lists", params={
            "$select": "id,displayName,description,webUrl,list",
            "$filter": "list/hidden eq false",
            "$top": 100,
        })
        return [SharePointList.from_api(lst) for lst in resp.get("value", [])]

    def get_list(self, site_id: str, list_id: str) -> SharePointList:
        resp = self._request(
            f"sites/{site_id}/lists/{list_id}",
            params={"$select": "id,displayName,description,webUrl,list"},
        )
        return SharePointList.from_api(resp)

    def get_list_columns(self, site_id: str, list_id: str) -> List[ColumnDefinition]:
        """
        Get a list's column definitions.

        Args:
            site_id: Graph site ID
            list_id: Graph list ID

        Returns:
            ColumnDefinitions with Graph type facets mapped to ColumnType
        """
        resp = self._request(f"sites/{site_id}/lists/{list_id}/columns", params={"$top": 200})
        return [column_from_graph(c) for c in resp.get("value", [])]

    def get_list_item_count(self, site_id: str, list_id: str) -> int:
        """Item count of a list, or 0 if it cannot be read."""
        try:
            return self.get_list(site_id, list_id).item_count
        except GraphApiError as e:
            logger.error(f"Error getting item count for {site_id}:{list_id}: {e}")
            return 0

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_list_items(
        self,
        site_id: str,
        list_id: str,
        top: int = 200,
        select: Optional[List[str]] = None,
        next_link: Optional[str] = None,
    ) -> ItemPage:
        """
        Fetch one page of list items with their fields expanded.

        Args:
            site_id: Graph site ID
            list_id: Graph list ID
            top: Page size
            select: Optional field names to expand (default: all fields)
            next_link: Continuation URL from a previous page

        Returns:
            ItemPage with items and the continuation link, if any
        """
        if next_link:
            resp = self._request(next_link)
        else:
            expand = f"fields($select={','.join(select)})" if select else "fields"
            resp = self._request(
                f"sites/{site_id}/lists/{list_id}/items",
                params={"$expand": expand, "$top": top},
            )

        link = resp.get("@odata.nextLink")
        return ItemPage(items=resp.get("value", []), has_more=bool(link), next_link=link)

    def iter_list_items(
        self,
        site_id: str,
        list_id: str,
        page_size: int = 200,
        select: Optional[List[str]] = None,
    ) -> Generator[Dict[str, Any], None, None]:
        """Yield every item of a list, following continuation links."""
        page = self.get_list_items(site_id, list_id, top=page_size, select=select)
        while True:
            yield from page.items
            if not page.has_more:
                break
            page = self.get_list_items(site_id, list_id, next_link=page.next_link)


def create_graph_client(access_token: str, config: Optional[Dict[str, Any]] = None) -> GraphClient:
    """
    Create a Graph client from configuration.

    Args:
        access_token: OAuth bearer token
        config: Configuration dictionary (default: loaded from config.yaml)

    Returns:
        Configured GraphClient
    """
    settings = get_graph_settings(config)
    return GraphClient(
        access_token,
        base_url=settings.get("base_url", GRAPH_BASE_URL),
        timeout_s=float(settings.get("timeout_seconds", 30)),
        retry_policy=RetryPolicy.from_config(settings.get("retry", {})),
    )
