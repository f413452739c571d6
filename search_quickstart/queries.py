"""Search the hotel index and run the five illustrative queries."""
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from elasticsearch import AsyncElasticsearch

from search_quickstart.documents import get_document
from search_quickstart.errors import SERVICE_EXCEPTIONS, InvalidQueryError, from_transport_error
from search_quickstart.indexes import IndexHandle
from search_quickstart.odata import odata, parse_filter

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
DEFAULT_FACET_COUNT = 10
SELECT_FIELDS = ["HotelId", "HotelName", "Rating"]


@dataclass
class SearchOptions:
    select: Optional[List[str]] = None
    filter: Optional[str] = None
    order_by: Optional[List[str]] = None
    search_fields: Optional[List[str]] = None
    facets: Optional[List[str]] = None
    include_total_count: bool = False
    top: Optional[int] = None
    skip: int = 0
    search_mode: str = "any"


@dataclass
class SearchResult:
    document: dict
    score: Optional[float]


def _parse_order_by(entry: str, handle: IndexHandle) -> dict:
    parts = entry.split()
    if not parts or len(parts) > 2:
        raise InvalidQueryError(f"invalid orderBy entry {entry!r}")
    direction = parts[1].lower() if len(parts) == 2 else "asc"
    if direction not in ("asc", "desc"):
        raise InvalidQueryError(f"invalid sort direction in {entry!r}")
    return {handle.schema.sort_field(parts[0]): {"order": direction}}


def _parse_facet(entry: str, handle: IndexHandle) -> tuple:
    """Parse "Category" or "Category,count:5" into (path, terms aggregation)."""
    path, *params = [p.strip() for p in entry.split(",")]
    size = DEFAULT_FACET_COUNT
    for param in params:
        name, _, value = param.partition(":")
        if name != "count" or not value.isdigit() or int(value) < 1:
            raise InvalidQueryError(f"unsupported facet parameter {param!r} in {entry!r}")
        size = int(value)
    return path, {"terms": {"field": handle.schema.facet_field(path), "size": size}}


def build_search_request(handle: IndexHandle, search_text: str, options: SearchOptions) -> dict:
    """Keyword arguments for AsyncElasticsearch.search, minus paging. Raises InvalidQueryError."""
    schema = handle.schema
    text = (search_text or "").strip()
    if options.search_mode not in ("any", "all"):
        raise InvalidQueryError(f"search_mode must be 'any' or 'all', got {options.search_mode!r}")
    if options.search_fields is not None:
        fields = schema.search_fields(options.search_fields)
    else:
        fields = schema.search_fields()
    if text in ("", "*"):
        must = {"match_all": {}}
    else:
        must = {
            "simple_query_string": {
                "query": text,
                "fields": fields,
                "default_operator": "and" if options.search_mode == "all" else "or",
            }
        }
    query = {"bool": {"must": [must]}}
    if options.filter:
        query["bool"]["filter"] = [parse_filter(options.filter, schema)]

    request: Dict[str, Any] = {
        "query": query,
        "track_total_hits": bool(options.include_total_count),
    }
    if options.select:
        request["source"] = schema.source_fields(options.select)
    if options.order_by:
        request["sort"] = [_parse_order_by(e, handle) for e in options.order_by]
    if options.facets:
        request["aggs"] = dict(_parse_facet(e, handle) for e in options.facets)
    return request


class SearchResults:
    """Lazy, service-ordered results of one search. Iterate with `async for`.

    The first page is fetched by search(); later pages are requested while iterating.
    """

    def __init__(
        self,
        client: AsyncElasticsearch,
        handle: IndexHandle,
        request: dict,
        options: SearchOptions,
        first_page: dict,
    ):
        self._client = client
        self._handle = handle
        # Later pages only need hits: no aggregations, no total count.
        self._next_request = {k: v for k, v in request.items() if k != "aggs"}
        self._next_request["track_total_hits"] = False
        self._top = options.top
        self._skip = options.skip
        self._page = first_page
        total = first_page["hits"].get("total")
        self.count: Optional[int] = total["value"] if options.include_total_count and total else None
        self.facets: Dict[str, List[dict]] = {
            name: [{"value": b["key"], "count": b["doc_count"]} for b in agg.get("buckets", [])]
            for name, agg in (first_page.get("aggregations") or {}).items()
        }

    async def __aiter__(self) -> AsyncIterator[SearchResult]:
        yielded = 0
        page = self._page
        offset = self._skip
        while True:
            hits = page["hits"]["hits"]
            for hit in hits:
                if self._top is not None and yielded >= self._top:
                    return
                yielded += 1
                yield SearchResult(document=hit.get("_source", {}), score=hit.get("_score"))
            offset += len(hits)
            if len(hits) < PAGE_SIZE or (self._top is not None and yielded >= self._top):
                return
            page = await _fetch_page(self._client, self._handle, self._next_request, offset)


async def _fetch_page(client: AsyncElasticsearch, handle: IndexHandle, request: dict, offset: int) -> dict:
    logger.debug("Search %s from=%d: %s", handle.name, offset, request)
    try:
        resp = await client.search(index=handle.name, from_=offset, size=PAGE_SIZE, **request)
    except SERVICE_EXCEPTIONS as e:
        raise from_transport_error(f"search {handle.name!r}", e) from e
    return resp.body if hasattr(resp, "body") else resp


async def search(
    client: AsyncElasticsearch,
    handle: IndexHandle,
    search_text: str,
    options: Optional[SearchOptions] = None,
) -> SearchResults:
    """Run a search and return its results. Option errors raise before any request is sent."""
    options = options or SearchOptions()
    request = build_search_request(handle, search_text, options)
    first_page = await _fetch_page(client, handle, request, options.skip)
    return SearchResults(client, handle, request, options, first_page)


async def _print_documents(results: SearchResults) -> None:
    async for result in results:
        print(json.dumps(result.document))


async def send_queries(client: AsyncElasticsearch, handle: IndexHandle) -> None:
    print("Query #1 - search everything:")
    results = await search(client, handle, "*", SearchOptions(include_total_count=True, select=SELECT_FIELDS))
    await _print_documents(results)
    print(f"Result count: {results.count}")
    print()

    print("Query #2 - search with filter, orderBy, and select:")
    state = "FL"
    options = SearchOptions(
        filter=odata("Address/StateProvince eq {}", state),
        order_by=["Rating desc"],
        select=SELECT_FIELDS,
    )
    await _print_documents(await search(client, handle, "wifi", options))
    print()

    print("Query #3 - limit searchFields:")
    options = SearchOptions(select=SELECT_FIELDS, search_fields=["HotelName"])
    await _print_documents(await search(client, handle, "sublime cliff", options))
    print()

    print("Query #4 - limit searchFields and use facets:")
    options = SearchOptions(facets=["Category"], select=SELECT_FIELDS, search_fields=["HotelName"])
    results = await search(client, handle, "*", options)
    await _print_documents(results)
    for name, buckets in results.facets.items():
        print(f"Facet {name}: " + ", ".join(f"{b['value']} ({b['count']})" for b in buckets))
    print()

    print("Query #5 - Lookup document:")
    doc = await get_document(client, handle, "3")
    print(f"HotelId: {doc['HotelId']}; HotelName: {doc['HotelName']}")
    print()
