"""
Backend contract consumed by the sync layer.

Both adapters (hosted REST service and self-hosted SQL database) expose the
same small surface: structured queries, named procedures, single-record
writes and the identity of the calling user.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from portal_common.utils import parse_timestamp

Record = dict[str, Any]


@dataclass
class Query:
    """Filter, ordering and pagination for one collection read."""

    eq: dict[str, Any] = field(default_factory=dict)
    in_: dict[str, Sequence[Any]] = field(default_factory=dict)
    gte: dict[str, Any] = field(default_factory=dict)
    lte: dict[str, Any] = field(default_factory=dict)
    lt: dict[str, Any] = field(default_factory=dict)
    search: str | None = None
    search_fields: tuple[str, ...] = ()
    order_by: str | None = None
    descending: bool = False
    offset: int = 0
    limit: int | None = None
    count: bool = False


@dataclass(frozen=True)
class QueryResult:
    records: list[Record]
    total: int | None = None


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    roles: tuple[str, ...] = ()

    @property
    def role(self) -> str:
        return self.roles[0] if self.roles else "member"


@runtime_checkable
class Backend(Protocol):
    async def query(self, collection: str, query: Query | None = None) -> QueryResult: ...

    async def call(self, procedure: str, args: Mapping[str, Any] | None = None) -> Any: ...

    async def insert(self, collection: str, record: Mapping[str, Any]) -> Record: ...

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> Record: ...

    async def delete(self, collection: str, record_id: str) -> None: ...

    async def current_user(self) -> CurrentUser | None: ...

    async def aclose(self) -> None: ...


def _comparable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return parse_timestamp(value)
    if isinstance(value, str) and len(value) >= 10 and value[4:5] == "-" and value[7:8] == "-":
        parsed = parse_timestamp(value)
        if parsed is not None:
            return parsed
    return value


def _compare(left: Any, right: Any, op: str) -> bool:
    if left is None:
        return False
    a, b = _comparable(left), _comparable(right)
    try:
        if op == "gte":
            return a >= b
        if op == "lte":
            return a <= b
        return a < b
    except TypeError:
        return False


def _sort_key(value: Any) -> tuple[int, Any]:
    value = _comparable(value)
    if value is None:
        return (1, "")
    if isinstance(value, bool):
        return (0, int(value))
    return (0, value)


def apply_query(records: Sequence[Mapping[str, Any]], query: Query | None) -> QueryResult:
    """Evaluate a :class:`Query` against in-memory records.

    Used for seed datasets and in-process test doubles so that degraded data
    is filtered, ordered and paged exactly like a live read.
    """
    rows = [dict(record) for record in records]
    if query is None:
        return QueryResult(rows, len(rows))

    for column, value in query.eq.items():
        rows = [row for row in rows if row.get(column) == value]
    for column, values in query.in_.items():
        allowed = list(values)
        rows = [row for row in rows if row.get(column) in allowed]
    for op, bounds in (("gte", query.gte), ("lte", query.lte), ("lt", query.lt)):
        for column, bound in bounds.items():
            rows = [row for row in rows if _compare(row.get(column), bound, op)]

    if query.search and query.search_fields:
        needle = query.search.lower()
        rows = [
            row
            for row in rows
            if any(needle in str(row.get(name) or "").lower() for name in query.search_fields)
        ]

    if query.order_by:
        present = [row for row in rows if row.get(query.order_by) is not None]
        missing = [row for row in rows if row.get(query.order_by) is None]
        try:
            present.sort(key=lambda row: _sort_key(row.get(query.order_by)), reverse=query.descending)
        except TypeError:
            present.sort(key=lambda row: str(row.get(query.order_by)), reverse=query.descending)
        rows = present + missing

    total = len(rows)
    start = max(query.offset, 0)
    end = start + query.limit if query.limit is not None else None
    return QueryResult(rows[start:end], total)
