import copy
import re
from pathlib import Path

import pytest
from elastic_transport import ApiResponseMeta, HttpHeaders, NodeConfig
from elasticsearch import ApiError, NotFoundError

from search_quickstart.data_files import load_documents, load_index_definition
from search_quickstart.indexes import IndexHandle
from search_quickstart.schema import IndexSchema

REPO_ROOT = Path(__file__).resolve().parent.parent
SCHEMA_PATH = REPO_ROOT / "mappings" / "hotels_quickstart_index.json"
DATA_PATH = REPO_ROOT / "data" / "hotels.json"


def api_meta(status: int) -> ApiResponseMeta:
    return ApiResponseMeta(
        status=status,
        http_version="1.1",
        headers=HttpHeaders(),
        duration=0.0,
        node=NodeConfig("http", "localhost", 9200),
    )


def not_found(reason: str) -> NotFoundError:
    return NotFoundError(reason, api_meta(404), {"error": {"type": "not_found", "reason": reason}, "status": 404})


MAPPING_TYPES = {
    "text",
    "keyword",
    "integer",
    "long",
    "double",
    "boolean",
    "date",
    "geo_point",
    "object",
    "search_as_you_type",
}
ANALYZED_TYPES = {"text", "search_as_you_type"}


def mapper_error(reason: str) -> ApiError:
    body = {"error": {"type": "mapper_parsing_exception", "reason": reason}, "status": 400}
    return ApiError(reason, api_meta(400), body)


def _check_properties(properties: dict, top_level: dict, prefix: str = "") -> None:
    """Reject mappings Elasticsearch would refuse at index creation."""
    for name, node in properties.items():
        path = f"{prefix}{name}"
        kind = node.get("type", "object")
        if kind not in MAPPING_TYPES:
            raise mapper_error(f"no handler for type [{kind}] declared on field [{path}]")
        if "analyzer" in node and kind not in ANALYZED_TYPES:
            raise mapper_error(f"unknown parameter [analyzer] on mapper [{path}] of type [{kind}]")
        for target in node.get("copy_to", []):
            if target not in top_level:
                raise mapper_error(f"copy_to target [{target}] of field [{path}] is not mapped")
        for sub_name, sub in (node.get("fields") or {}).items():
            sub_kind = sub.get("type", "object")
            if sub_kind in ("object", "search_as_you_type") or sub_kind not in MAPPING_TYPES:
                raise mapper_error(f"type [{sub_kind}] cannot be used in multi field [{path}.{sub_name}]")
            if "analyzer" in sub and sub_kind not in ANALYZED_TYPES:
                raise mapper_error(f"unknown parameter [analyzer] on mapper [{path}.{sub_name}] of type [{sub_kind}]")
        if kind == "object":
            _check_properties(node.get("properties", {}), top_level, f"{path}.")


def _get_path(doc: dict, name: str):
    if name.endswith(".keyword"):
        name = name[: -len(".keyword")]
    node = doc
    for part in name.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _values(doc: dict, name: str) -> list:
    v = _get_path(doc, name)
    if v is None:
        return []
    return v if isinstance(v, list) else [v]


def _words(text) -> set:
    return set(re.findall(r"\w+", str(text).lower()))


def _deep_merge(target: dict, patch: dict) -> dict:
    for k, v in patch.items():
        if isinstance(v, dict) and isinstance(target.get(k), dict):
            _deep_merge(target[k], v)
        else:
            target[k] = copy.deepcopy(v)
    return target


def _project(doc: dict, names: list) -> dict:
    out = {}
    for name in names:
        v = _get_path(doc, name)
        if v is None:
            continue
        parts = name.split(".")
        node = out
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = copy.deepcopy(v)
    return out


class FakeIndices:
    def __init__(self, service):
        self._service = service

    async def create(self, index, mappings=None, settings=None):
        self._service.calls.append(("indices.create", index))
        if index in self._service.store:
            raise RuntimeError(f"resource_already_exists_exception: {index}")
        properties = (mappings or {}).get("properties", {})
        _check_properties(properties, properties)
        self._service.store[index] = {"mappings": mappings, "docs": {}}
        return {"acknowledged": True, "index": index}

    async def delete(self, index):
        self._service.calls.append(("indices.delete", index))
        if index not in self._service.store:
            raise not_found(f"no such index [{index}]")
        del self._service.store[index]
        return {"acknowledged": True}

    async def exists(self, index):
        return index in self._service.store


class FakeSearchService:
    """In-memory stand-in for AsyncElasticsearch covering the calls the quickstart makes."""

    def __init__(self):
        self.indices = FakeIndices(self)
        self.store = {}
        self.calls = []
        self.search_requests = []
        self.count_lag = 0
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def close(self):
        self.closed = True

    def _docs(self, index) -> dict:
        if index not in self.store:
            raise not_found(f"no such index [{index}]")
        return self.store[index]["docs"]

    async def bulk(self, operations):
        self.calls.append(("bulk", len(operations) // 2))
        items = []
        for action, body in zip(operations[::2], operations[1::2]):
            meta = action["update"]
            docs = self._docs(meta["_index"])
            doc_id = meta["_id"]
            if doc_id in docs:
                _deep_merge(docs[doc_id], body["doc"])
                items.append({"update": {"_id": doc_id, "result": "updated", "status": 200}})
            else:
                docs[doc_id] = copy.deepcopy(body["doc"])
                items.append({"update": {"_id": doc_id, "result": "created", "status": 201}})
        return {"errors": False, "items": items}

    async def count(self, index):
        self.calls.append(("count", index))
        docs = self._docs(index)
        if self.count_lag > 0:
            self.count_lag -= 1
            return {"count": 0}
        return {"count": len(docs)}

    async def get(self, index, id, source_includes=None):
        self.calls.append(("get", id))
        docs = self._docs(index)
        if id not in docs:
            raise not_found(f"document [{id}] missing")
        src = docs[id]
        if source_includes:
            src = _project(src, source_includes)
        return {"_index": index, "_id": id, "found": True, "_source": copy.deepcopy(src)}

    async def search(self, index, query, track_total_hits=False, source=None, sort=None, aggs=None, from_=0, size=10):
        self.calls.append(("search", query))
        self.search_requests.append(
            {"query": query, "track_total_hits": track_total_hits, "aggs": aggs, "from_": from_, "size": size}
        )
        docs = self._docs(index)
        matched = []
        for doc_id, doc in docs.items():
            score = self._score(query, doc)
            if score is not None:
                matched.append((doc_id, doc, score))
        matched.sort(key=lambda m: -m[2])
        for clause in reversed(sort or []):
            (name, opts), = clause.items()
            reverse = opts.get("order") == "desc"
            matched.sort(key=lambda m: _get_path(m[1], name), reverse=reverse)
        page = matched[from_: from_ + size]
        hits = [
            {
                "_id": doc_id,
                "_score": float(score),
                "_source": _project(doc, source) if source else copy.deepcopy(doc),
            }
            for doc_id, doc, score in page
        ]
        resp = {"hits": {"hits": hits}}
        if track_total_hits:
            resp["hits"]["total"] = {"value": len(matched), "relation": "eq"}
        if aggs:
            resp["aggregations"] = {}
            for name, agg in aggs.items():
                counts = {}
                for _, doc, _ in matched:
                    for v in _values(doc, agg["terms"]["field"]):
                        counts[v] = counts.get(v, 0) + 1
                ordered = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
                resp["aggregations"][name] = {
                    "buckets": [{"key": k, "doc_count": c} for k, c in ordered[: agg["terms"]["size"]]]
                }
        return resp

    def _score(self, query: dict, doc: dict):
        """Return a score if doc matches query, else None."""
        (kind, body), = query.items()
        if kind == "match_all":
            return 1.0
        if kind == "term":
            (name, value), = body.items()
            return 1.0 if value in _values(doc, name) else None
        if kind == "exists":
            return 1.0 if _values(doc, body["field"]) else None
        if kind == "range":
            (name, bounds), = body.items()
            vals = _values(doc, name)
            ops = {
                "gt": lambda a, b: a > b,
                "gte": lambda a, b: a >= b,
                "lt": lambda a, b: a < b,
                "lte": lambda a, b: a <= b,
            }
            ok = any(all(ops[op](v, bound) for op, bound in bounds.items()) for v in vals)
            return 1.0 if ok else None
        if kind == "simple_query_string":
            terms = _words(body["query"])
            text = set()
            for name in body["fields"]:
                for v in _values(doc, name):
                    text |= _words(v)
            hits = len(terms & text)
            if body.get("default_operator") == "and":
                return float(hits) if hits == len(terms) else None
            return float(hits) if hits else None
        if kind == "bool":
            score = 0.0
            for clause in body.get("must", []):
                s = self._score(clause, doc)
                if s is None:
                    return None
                score += s
            for clause in body.get("filter", []):
                if self._score(clause, doc) is None:
                    return None
            for clause in body.get("must_not", []):
                if self._score(clause, doc) is not None:
                    return None
            should = body.get("should", [])
            if should:
                matched = [s for s in (self._score(c, doc) for c in should) if s is not None]
                if len(matched) < body.get("minimum_should_match", 1):
                    return None
                score += sum(matched)
            return score if score else 1.0
        raise AssertionError(f"fake search does not support {kind}")


@pytest.fixture
def service():
    return FakeSearchService()


@pytest.fixture
def definition():
    return load_index_definition(SCHEMA_PATH)


@pytest.fixture
def hotels():
    return load_documents(DATA_PATH)


@pytest.fixture
def handle(definition):
    schema = IndexSchema.from_definition(definition)
    return IndexHandle(name=schema.name, schema=schema)
