"""Turns raw query-string parameters into a :class:`StructuredQuery`.

Bracketed keys carry comparison intent: ``price[gte]=500`` filters ``price``
with the ``gte`` operator, ``difficulty=easy`` is an equality match. The
translator only reshapes syntax; it never checks whether a field exists and
never talks to the store.

Typical use::

    query = QueryTranslator(params).filter().sort().limit_fields().paginate().query
"""
from __future__ import annotations

import math
import re
from typing import Any, Iterable

from app.core.errors import AppError
from app.schemas.query import (
    FilterCondition,
    FilterOperator,
    PaginationWindow,
    Projection,
    SortClause,
    StructuredQuery,
)

RESERVED_PARAMS = frozenset({"page", "sort", "limit", "fields"})
DEFAULT_SORT_FIELD = "createdAt"
SCHEMA_VERSION_FIELD = "__v"
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 100
# Largest offset or row count a SQL backend accepts (signed 64-bit).
MAX_WINDOW_VALUE = 2**63 - 1

_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)$")
_SEGMENT_RE = re.compile(r"\[([^\[\]]*)\]")

RawQueryParams = dict[str, Any]


def _assign(target: dict, path: list[str], value: str) -> None:
    for segment in path[:-1]:
        nested = target.get(segment)
        if not isinstance(nested, dict):
            nested = {}
            target[segment] = nested
        target = nested
    leaf = path[-1]
    existing = target.get(leaf)
    if isinstance(existing, list):
        existing.append(value)
    elif isinstance(existing, str):
        target[leaf] = [existing, value]
    else:
        target[leaf] = value


def parse_raw_query(items: Iterable[tuple[str, str]]) -> RawQueryParams:
    params: RawQueryParams = {}
    for key, value in items:
        match = _KEY_RE.match(key)
        path = [match.group(1), *_SEGMENT_RE.findall(match.group(2))] if match else [key]
        _assign(params, path, value)
    return params


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _last_text(value: Any) -> str:
    if isinstance(value, list):
        value = value[-1] if value else None
    return value if isinstance(value, str) else ""


def _as_number(value: Any) -> float:
    text = _last_text(value).strip()
    if not text:
        return 0.0
    try:
        number = float(text)
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _in_operand(value: Any) -> list[str]:
    items = value if isinstance(value, list) else [value]
    result: list[str] = []
    for item in items:
        result.extend(_split_csv(str(item)))
    return result


class QueryTranslator:
    def __init__(self, params: RawQueryParams):
        self.params = params
        self.query = StructuredQuery()

    def _operator_conditions(self, field: str, operators: dict) -> list[FilterCondition]:
        conditions = []
        for raw_op, operand in operators.items():
            try:
                op = FilterOperator(raw_op)
            except ValueError:
                raise AppError(f"Unsupported filter operator '{raw_op}' for field '{field}'", 400)
            if isinstance(operand, dict):
                raise AppError(f"Invalid value for filter '{field}[{raw_op}]'", 400)
            if op is FilterOperator.IN:
                operand = _in_operand(operand)
            elif isinstance(operand, list):
                operand = operand[-1]
            conditions.append(FilterCondition(field=field, op=op, value=operand))
        return conditions

    def filter(self) -> "QueryTranslator":
        conditions: list[FilterCondition] = []
        for field, value in self.params.items():
            if field in RESERVED_PARAMS:
                continue
            if isinstance(value, dict):
                conditions.extend(self._operator_conditions(field, value))
            elif isinstance(value, list):
                conditions.append(FilterCondition(field=field, op=FilterOperator.IN, value=list(value)))
            else:
                conditions.append(FilterCondition(field=field, op=FilterOperator.EQ, value=value))
        self.query.filters = conditions
        return self

    def sort(self) -> "QueryTranslator":
        clauses = []
        for item in _split_csv(_last_text(self.params.get("sort"))):
            if item.startswith("-"):
                if item[1:]:
                    clauses.append(SortClause(field=item[1:], dir="desc"))
            else:
                clauses.append(SortClause(field=item, dir="asc"))
        self.query.sort = clauses or [SortClause(field=DEFAULT_SORT_FIELD, dir="desc")]
        return self

    def limit_fields(self) -> "QueryTranslator":
        fields = list(dict.fromkeys(_split_csv(_last_text(self.params.get("fields")))))
        excluded = [item[1:] for item in fields if item.startswith("-") and item[1:]]
        included = [item for item in fields if not item.startswith("-")]
        if excluded and included:
            raise AppError("Field selection cannot mix included and excluded fields", 400)
        if included:
            self.query.projection = Projection(include=included)
        elif excluded:
            self.query.projection = Projection(exclude=excluded)
        else:
            self.query.projection = Projection(exclude=[SCHEMA_VERSION_FIELD])
        return self

    def paginate(self) -> "QueryTranslator":
        page = int(_as_number(self.params.get("page"))) or DEFAULT_PAGE
        limit = int(_as_number(self.params.get("limit"))) or DEFAULT_LIMIT
        # Non-positive pages would produce a negative skip.
        page = max(page, 1)
        if limit < 1:
            limit = DEFAULT_LIMIT
        if limit > MAX_WINDOW_VALUE or (page - 1) * limit > MAX_WINDOW_VALUE:
            raise AppError("Pagination values are too large", 400)
        self.query.page = PaginationWindow(page=page, limit=limit)
        return self
