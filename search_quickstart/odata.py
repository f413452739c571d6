"""Filter expressions in the OData style used by the quickstart, e.g. Address/StateProvince eq 'FL'.

odata() builds an expression with safely quoted values; parse_filter() turns one
into an Elasticsearch query for the filter context of a search request.
Supported: eq ne gt ge lt le, and / or / not, parentheses; literals are quoted
strings, numbers, ISO dates or datetimes (unquoted, e.g. 2000-01-01T00:00:00Z),
true, false and null.
"""
import re
from datetime import date, datetime
from typing import Any, List, Tuple

from search_quickstart.errors import InvalidQueryError
from search_quickstart.schema import IndexSchema

COMPARISONS = ("eq", "ne", "gt", "ge", "lt", "le")
RANGE_OPS = {"gt": "gt", "ge": "gte", "lt": "lt", "le": "lte"}

_TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<lparen>\() |
        (?P<rparen>\)) |
        (?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*") |
        (?P<datetime>\d{4}-\d{2}-\d{2}(?:T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:\d{2})?)?) |
        (?P<number>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?) |
        (?P<word>[A-Za-z_][\w]*(?:/[A-Za-z_][\w]*)*)
    )""",
    re.VERBOSE,
)


def quote(value: Any) -> str:
    """Render a Python value as a filter literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    text = str(value).replace("'", "''")
    return f"'{text}'"


def odata(template: str, *values: Any) -> str:
    """Fill {} placeholders in template with quoted literals: odata("Rating ge {}", 4)."""
    return template.format(*(quote(v) for v in values))


def _tokenize(expression: str) -> List[Tuple[str, Any]]:
    tokens = []
    pos = 0
    text = expression.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise InvalidQueryError(f"cannot parse filter at position {pos}: {expression!r}")
        pos = m.end()
        kind = m.lastgroup
        raw = m.group(kind)
        if kind == "string":
            q = raw[0]
            tokens.append(("literal", raw[1:-1].replace(q + q, q)))
        elif kind == "datetime":
            tokens.append(("literal", raw))
        elif kind == "number":
            tokens.append(("literal", float(raw) if any(c in raw for c in ".eE") else int(raw)))
        elif kind == "word":
            low = raw.lower()
            if low in ("true", "false"):
                tokens.append(("literal", low == "true"))
            elif low == "null":
                tokens.append(("literal", None))
            elif low in ("and", "or", "not") or low in COMPARISONS:
                tokens.append((low, low))
            else:
                tokens.append(("field", raw))
        else:
            tokens.append((kind, raw))
    return tokens


class _Parser:
    def __init__(self, expression: str, schema: IndexSchema):
        self.expression = expression
        self.schema = schema
        self.tokens = _tokenize(expression)
        self.pos = 0

    def _peek(self) -> str:
        return self.tokens[self.pos][0] if self.pos < len(self.tokens) else "end"

    def _take(self, kind: str) -> Any:
        if self._peek() != kind:
            raise InvalidQueryError(f"expected {kind}, got {self._peek()} in filter {self.expression!r}")
        value = self.tokens[self.pos][1]
        self.pos += 1
        return value

    def parse(self) -> dict:
        query = self._or()
        if self._peek() != "end":
            raise InvalidQueryError(f"unexpected {self._peek()} in filter {self.expression!r}")
        return query

    def _or(self) -> dict:
        parts = [self._and()]
        while self._peek() == "or":
            self._take("or")
            parts.append(self._and())
        if len(parts) == 1:
            return parts[0]
        return {"bool": {"should": parts, "minimum_should_match": 1}}

    def _and(self) -> dict:
        parts = [self._unary()]
        while self._peek() == "and":
            self._take("and")
            parts.append(self._unary())
        if len(parts) == 1:
            return parts[0]
        return {"bool": {"filter": parts}}

    def _unary(self) -> dict:
        if self._peek() == "not":
            self._take("not")
            return {"bool": {"must_not": [self._unary()]}}
        if self._peek() == "lparen":
            self._take("lparen")
            inner = self._or()
            self._take("rparen")
            return inner
        return self._comparison()

    def _comparison(self) -> dict:
        path = self._take("field")
        op = self._peek()
        if op not in COMPARISONS:
            raise InvalidQueryError(f"expected comparison after {path!r} in filter {self.expression!r}")
        self._take(op)
        value = self._take("literal")
        name = self.schema.filter_field(path)
        if op == "eq":
            if value is None:
                return {"bool": {"must_not": [{"exists": {"field": name}}]}}
            return {"term": {name: value}}
        if op == "ne":
            if value is None:
                return {"exists": {"field": name}}
            return {"bool": {"must_not": [{"term": {name: value}}]}}
        if value is None:
            raise InvalidQueryError(f"{op} needs a non-null value in filter {self.expression!r}")
        return {"range": {name: {RANGE_OPS[op]: value}}}


def parse_filter(expression: str, schema: IndexSchema) -> dict:
    """Translate a filter expression into an Elasticsearch query, checking fields against schema."""
    if not expression or not expression.strip():
        raise InvalidQueryError("empty filter expression")
    return _Parser(expression, schema).parse()
