"""Translate the service-neutral index definition into an Elasticsearch mapping.

The schema document describes fields with Edm.* types and per-field flags
(key, searchable, filterable, sortable, facetable). Elasticsearch has no such
flags, so each field is mapped to the closest field type and the flags are kept
on the resulting IndexSchema; the query runner checks them before it sends a
filter, sort or facet request.

Field paths use "/" for nested fields (Address/StateProvince); the matching
Elasticsearch name uses "." (Address.StateProvince).
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from search_quickstart.data_files import IndexDefinition
from search_quickstart.errors import InvalidIndexDefinitionError, InvalidQueryError

KEYWORD_SUBFIELD = "keyword"

SCALAR_TYPES = {
    "Edm.String": "text",
    "Edm.Int32": "integer",
    "Edm.Int64": "long",
    "Edm.Double": "double",
    "Edm.Boolean": "boolean",
    "Edm.DateTimeOffset": "date",
    "Edm.GeographyPoint": "geo_point",
}
COMPLEX_TYPE = "Edm.ComplexType"

ANALYZERS = {
    "en.lucene": "english",
    "en.microsoft": "english",
    "fr.lucene": "french",
    "fr.microsoft": "french",
    "standard.lucene": "standard",
    "standardasciifolding.lucene": "standard",
}


@dataclass(frozen=True)
class FieldSpec:
    path: str
    type: str
    key: bool = False
    searchable: bool = False
    filterable: bool = False
    sortable: bool = False
    facetable: bool = False

    @property
    def es_name(self) -> str:
        return self.path.replace("/", ".")

    @property
    def element_type(self) -> str:
        t = self.type
        if t.startswith("Collection(") and t.endswith(")"):
            return t[len("Collection("):-1]
        return t

    @property
    def is_complex(self) -> bool:
        return self.element_type == COMPLEX_TYPE

    @property
    def has_keyword_subfield(self) -> bool:
        return (
            self.element_type == "Edm.String"
            and self.searchable
            and not self.key
            and (self.filterable or self.sortable or self.facetable)
        )

    @property
    def exact_name(self) -> str:
        """Name to use for exact-value operations (term filters, sorting, aggregations)."""
        if self.has_keyword_subfield:
            return f"{self.es_name}.{KEYWORD_SUBFIELD}"
        return self.es_name


@dataclass
class IndexSchema:
    name: str
    key_field: str
    mappings: dict
    fields: Dict[str, FieldSpec] = field(default_factory=dict)

    @classmethod
    def from_definition(cls, definition: IndexDefinition) -> "IndexSchema":
        fields: Dict[str, FieldSpec] = {}
        properties = _map_fields(definition.fields, "", fields)
        keys = [spec.path for spec in fields.values() if spec.key]
        if len(keys) != 1:
            raise InvalidIndexDefinitionError(f"exactly one key field required, found {len(keys)}")
        if "/" in keys[0]:
            raise InvalidIndexDefinitionError(f"key field {keys[0]!r} must be a top-level field")
        key_spec = fields[keys[0]]
        if key_spec.type != "Edm.String":
            raise InvalidIndexDefinitionError(f"key field {keys[0]!r} must be Edm.String")
        _apply_suggesters(definition.suggesters, fields, properties)
        return cls(
            name=definition.name,
            key_field=keys[0],
            mappings={"properties": properties},
            fields=fields,
        )

    def lookup(self, path: str) -> FieldSpec:
        spec = self.fields.get(path.strip())
        if spec is None:
            raise InvalidQueryError(f"unknown field {path!r} in index {self.name!r}")
        return spec

    def _flagged(self, path: str, flag: str) -> FieldSpec:
        spec = self.lookup(path)
        if spec.is_complex or not getattr(spec, flag):
            raise InvalidQueryError(f"field {path!r} is not {flag}")
        return spec

    def filter_field(self, path: str) -> str:
        return self._flagged(path, "filterable").exact_name

    def sort_field(self, path: str) -> str:
        return self._flagged(path, "sortable").exact_name

    def facet_field(self, path: str) -> str:
        return self._flagged(path, "facetable").exact_name

    def search_fields(self, paths: Optional[Iterable[str]] = None) -> List[str]:
        """Elasticsearch names of the given searchable fields, or of every searchable field."""
        if paths is None:
            return [s.es_name for s in self.fields.values() if s.searchable and not s.is_complex]
        return [self._flagged(p, "searchable").es_name for p in paths]

    def source_fields(self, paths: Iterable[str]) -> List[str]:
        return [self.lookup(p).es_name for p in paths]


def _map_fields(defs: List[dict], prefix: str, out: Dict[str, FieldSpec]) -> dict:
    properties = {}
    for d in defs:
        name = d.get("name") if isinstance(d, dict) else None
        if not name or not isinstance(name, str):
            raise InvalidIndexDefinitionError(f"field without a name under {prefix or 'root'!r}")
        path = f"{prefix}/{name}" if prefix else name
        if path in out:
            raise InvalidIndexDefinitionError(f"duplicate field {path!r}")
        spec = FieldSpec(
            path=path,
            type=str(d.get("type", "")),
            key=bool(d.get("key", False)),
            searchable=bool(d.get("searchable", False)),
            filterable=bool(d.get("filterable", False)),
            sortable=bool(d.get("sortable", False)),
            facetable=bool(d.get("facetable", False)),
        )
        out[path] = spec
        if spec.is_complex:
            sub = d.get("fields")
            if not isinstance(sub, list) or not sub:
                raise InvalidIndexDefinitionError(f"complex field {path!r} needs sub-fields")
            properties[name] = {"type": "object", "properties": _map_fields(sub, path, out)}
        else:
            properties[name] = _map_scalar(spec, d.get("analyzer"))
    return properties


def _map_scalar(spec: FieldSpec, analyzer: Optional[str]) -> dict:
    es_type = SCALAR_TYPES.get(spec.element_type)
    if es_type is None:
        raise InvalidIndexDefinitionError(f"field {spec.path!r} has unsupported type {spec.type!r}")
    if es_type != "text":
        return {"type": es_type}
    if spec.key or not spec.searchable:
        return {"type": "keyword"}
    mapping = {"type": "text"}
    if analyzer:
        mapping["analyzer"] = ANALYZERS.get(analyzer, analyzer)
    if spec.has_keyword_subfield:
        mapping["fields"] = {KEYWORD_SUBFIELD: {"type": "keyword", "ignore_above": 256}}
    return mapping


def _lookup_property(properties: dict, path: str) -> dict:
    parts = path.split("/")
    node = properties[parts[0]]
    for part in parts[1:]:
        node = node["properties"][part]
    return node


def _apply_suggesters(suggesters: List[dict], fields: Dict[str, FieldSpec], properties: dict) -> None:
    """Add a top-level search_as_you_type field, named after the suggester, fed by copy_to from each source field.

    Elasticsearch does not allow search_as_you_type inside multi-fields.
    """
    for sg in suggesters:
        name = sg.get("name") if isinstance(sg, dict) else None
        if not name:
            raise InvalidIndexDefinitionError("suggester without a name")
        if name in properties:
            raise InvalidIndexDefinitionError(f"suggester {name!r} clashes with a field of the same name")
        for path in sg.get("sourceFields") or []:
            spec = fields.get(path)
            if spec is None or spec.element_type != "Edm.String":
                raise InvalidIndexDefinitionError(
                    f"suggester {name!r} source field {path!r} must be an existing string field"
                )
            node = _lookup_property(properties, path)
            targets = node.setdefault("copy_to", [])
            if name not in targets:
                targets.append(name)
        properties[name] = {"type": "search_as_you_type"}
