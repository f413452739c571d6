"""Load the bundled index definition and hotel records from mappings/ and data/."""
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, TypedDict, Union

REPO_ROOT = Path(__file__).resolve().parent.parent
MAPPINGS_DIR = REPO_ROOT / "mappings"
DATA_DIR = REPO_ROOT / "data"

DEFAULT_SCHEMA_PATH = MAPPINGS_DIR / "hotels_quickstart_index.json"
DEFAULT_DATA_PATH = DATA_DIR / "hotels.json"


class Address(TypedDict, total=False):
    StreetAddress: str
    City: str
    StateProvince: str
    PostalCode: str
    Country: str


class Hotel(TypedDict, total=False):
    HotelId: str
    HotelName: str
    Description: str
    Description_fr: str
    Category: str
    Tags: List[str]
    ParkingIncluded: Union[bool, str]
    LastRenovationDate: str
    Rating: float
    Address: Address


@dataclass(frozen=True)
class IndexDefinition:
    """Index name, field list and suggesters, as read from the schema document."""

    name: str
    fields: List[dict]
    suggesters: List[dict] = field(default_factory=list)

    @property
    def key_field(self) -> Optional[str]:
        for f in self.fields:
            if f.get("key"):
                return f.get("name")
        return None


def _read_json(path: Path) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"{path}: invalid JSON - {e}") from e


def load_index_definition(path: Path = DEFAULT_SCHEMA_PATH) -> IndexDefinition:
    """Read the index schema document. Raises ValueError if name or fields are missing."""
    raw = _read_json(path)
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: index definition must be a JSON object")
    name = raw.get("name")
    fields = raw.get("fields")
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"{path}: index definition needs a non-empty 'name'")
    if not isinstance(fields, list) or not fields:
        raise ValueError(f"{path}: index definition needs a non-empty 'fields' list")
    suggesters = raw.get("suggesters", [])
    if not isinstance(suggesters, list):
        raise ValueError(f"{path}: 'suggesters' must be a list")
    return IndexDefinition(name=name.strip(), fields=fields, suggesters=suggesters)


def load_documents(path: Path = DEFAULT_DATA_PATH, key_field: str = "HotelId") -> List[Hotel]:
    """Read the {"value": [...]} record set. Every record must be an object carrying key_field."""
    raw = _read_json(path)
    records = raw.get("value") if isinstance(raw, dict) else None
    if not isinstance(records, list):
        raise ValueError(f"{path}: expected an object with a 'value' list of records")
    for i, rec in enumerate(records):
        if not isinstance(rec, dict):
            raise ValueError(f"{path}: record {i} is not an object")
        key = rec.get(key_field)
        if key is None or str(key).strip() == "":
            raise ValueError(f"{path}: record {i} has no {key_field!r}")
    return records


def unique_keys(records: List[dict], key_field: str) -> List[str]:
    """Keys in first-seen order; the expected document count after an upsert."""
    seen = {}
    for rec in records:
        seen.setdefault(str(rec[key_field]), None)
    return list(seen)
