"""Upload hotel records, count them, and fetch one by key."""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from elasticsearch import AsyncElasticsearch, NotFoundError

from search_quickstart.errors import SERVICE_EXCEPTIONS, DocumentNotFoundError, from_transport_error
from search_quickstart.indexes import IndexHandle

logger = logging.getLogger(__name__)


@dataclass
class IndexingResult:
    key: str
    succeeded: bool
    status_code: int
    error_message: Optional[str] = None


@dataclass
class IndexDocumentsResult:
    results: List[IndexingResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(r.succeeded for r in self.results)

    @property
    def failed(self) -> List[IndexingResult]:
        return [r for r in self.results if not r.succeeded]


def _upsert_actions(index: str, key_field: str, records: Iterable[dict]) -> List[dict]:
    operations = []
    for rec in records:
        operations.append({"update": {"_index": index, "_id": str(rec[key_field])}})
        operations.append({"doc": rec, "doc_as_upsert": True})
    return operations


def _item_result(item: dict) -> IndexingResult:
    # Each bulk item is keyed by its action name ("update" here).
    info = next(iter(item.values()), {}) if item else {}
    status = int(info.get("status", 0))
    error = info.get("error")
    if isinstance(error, dict):
        error = error.get("reason") or error.get("type")
    return IndexingResult(
        key=str(info.get("_id", "")),
        succeeded=200 <= status < 300 and not error,
        status_code=status,
        error_message=error,
    )


async def merge_or_upload_documents(
    client: AsyncElasticsearch, handle: IndexHandle, records: List[dict]
) -> IndexDocumentsResult:
    """Upsert records by key: existing documents are merged, new keys inserted, nothing deleted."""
    if not records:
        return IndexDocumentsResult()
    operations = _upsert_actions(handle.name, handle.schema.key_field, records)
    logger.debug("Bulk upsert of %d records into %s", len(records), handle.name)
    try:
        resp = await client.bulk(operations=operations)
    except SERVICE_EXCEPTIONS as e:
        raise from_transport_error(f"upload documents to {handle.name!r}", e) from e
    result = IndexDocumentsResult([_item_result(item) for item in resp["items"]])
    for r in result.failed:
        logger.warning("Upload of %s failed: status=%s error=%s", r.key, r.status_code, r.error_message)
    return result


async def get_document_count(client: AsyncElasticsearch, handle: IndexHandle) -> int:
    try:
        resp = await client.count(index=handle.name)
    except SERVICE_EXCEPTIONS as e:
        raise from_transport_error(f"count documents in {handle.name!r}", e) from e
    return int(resp["count"])


async def wait_for_document_count(
    client: AsyncElasticsearch,
    handle: IndexHandle,
    expected: int,
    timeout: float = 10.0,
    interval: float = 1.0,
) -> int:
    """Poll the document count until it reaches expected or timeout elapses; return the last count.

    Uploaded documents become countable only after the service refreshes the index,
    so this is best effort. A short count is logged, not raised.
    """
    deadline = time.monotonic() + max(timeout, 0.0)
    attempt = 0
    while True:
        await asyncio.sleep(interval)
        attempt += 1
        count = await get_document_count(client, handle)
        logger.debug("Count poll %d on %s: %d/%d", attempt, handle.name, count, expected)
        if count >= expected:
            return count
        if time.monotonic() >= deadline:
            logger.warning(
                "Index %s reports %d of %d documents after %.1fs", handle.name, count, expected, timeout
            )
            return count


async def get_document(
    client: AsyncElasticsearch,
    handle: IndexHandle,
    key: str,
    selected_fields: Optional[List[str]] = None,
) -> dict:
    """Exact fetch by key. Raises DocumentNotFoundError if no document has that key."""
    kwargs = {}
    if selected_fields:
        kwargs["source_includes"] = handle.schema.source_fields(selected_fields)
    operation = f"get document from {handle.name!r}"
    try:
        resp = await client.get(index=handle.name, id=key, **kwargs)
    except NotFoundError as e:
        raise DocumentNotFoundError(operation, key) from e
    except SERVICE_EXCEPTIONS as e:
        raise from_transport_error(operation, e) from e
    if not resp["found"]:
        raise DocumentNotFoundError(operation, key)
    return resp["_source"]
