"""
In-memory snapshot of a store's collections and the statistics derived from them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, Iterable, Mapping, Sequence, TypeVar

from portal_common.utils import parse_timestamp, utcnow
from portal_sync.backend import Record

S = TypeVar("S")

ALL = "all"

Derive = Callable[[Mapping[str, list[Record]], datetime], S]


@dataclass(frozen=True)
class FilterCriteria:
    """Client-side filter: free-text search plus exact matches.

    ``None``, ``""`` and ``"all"`` leave a criterion unapplied.
    """

    search: str | None = None
    search_fields: tuple[str, ...] = ()
    exact: Mapping[str, Any] = field(default_factory=dict)


def _bypassed(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == "" or value.strip().lower() == ALL
    return False


def active_value(value: Any) -> Any:
    """Return ``value`` unless it is a bypass sentinel, else ``None``."""
    return None if _bypassed(value) else value


def filter_records(records: Sequence[Record], criteria: FilterCriteria | None) -> list[Record]:
    """Return the records matching ``criteria`` without touching the input."""
    result = list(records)
    if criteria is None:
        return result

    if not _bypassed(criteria.search) and criteria.search_fields:
        needle = criteria.search.strip().lower()
        result = [
            record
            for record in result
            if any(needle in str(record.get(name) or "").lower() for name in criteria.search_fields)
        ]

    for name, expected in criteria.exact.items():
        if _bypassed(expected):
            continue
        result = [record for record in result if _matches(record.get(name), expected)]
    return result


def _matches(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    return actual is not None and str(actual) == str(expected)


def dedupe_by_id(records: Iterable[Mapping[str, Any]]) -> list[Record]:
    """First occurrence of each id wins; records without an id are kept."""
    seen: set[Any] = set()
    unique: list[Record] = []
    for record in records:
        record_id = record.get("id")
        if record_id is not None:
            if record_id in seen:
                continue
            seen.add(record_id)
        unique.append(dict(record))
    return unique


def count_by(records: Iterable[Mapping[str, Any]], name: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for record in records:
        key = record.get(name)
        key = "unknown" if key is None else str(key)
        counts[key] = counts.get(key, 0) + 1
    return counts


def rate_percent(numerator: float, denominator: float) -> int:
    """Whole-number percentage, rounded half up; 0 when there is nothing to divide by."""
    if not denominator:
        return 0
    return int(math.floor(numerator / denominator * 100 + 0.5))


def within_window(value: Any, now: datetime, window: timedelta) -> bool:
    stamp = parse_timestamp(value)
    return stamp is not None and now - window <= stamp <= now


class StateReconciler(Generic[S]):
    """Owns named collections and recomputes statistics whenever they change."""

    def __init__(
        self,
        derive: Derive,
        collections: Sequence[str],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._derive = derive
        self._clock = clock
        self._collections: dict[str, list[Record]] = {name: [] for name in collections}
        self._stats: S = self._compute()

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._collections)

    @property
    def stats(self) -> S:
        return self._stats

    def get(self, name: str) -> list[Record]:
        return list(self._collections[name])

    def snapshot(self) -> dict[str, list[Record]]:
        return {name: list(records) for name, records in self._collections.items()}

    def apply(self, collections: Mapping[str, Iterable[Mapping[str, Any]]]) -> S:
        """Replace the named collections wholesale and recompute statistics."""
        for name, records in collections.items():
            if name not in self._collections:
                raise KeyError(f"unknown collection {name!r}")
            self._collections[name] = dedupe_by_id(records)
        self._stats = self._compute()
        return self._stats

    def upsert(self, name: str, record: Mapping[str, Any]) -> S:
        """Optimistic local patch: replace the record with the same id, or prepend it."""
        records = self._collections[name]
        record = dict(record)
        for index, existing in enumerate(records):
            if existing.get("id") == record.get("id"):
                records[index] = {**existing, **record}
                break
        else:
            records.insert(0, record)
        self._stats = self._compute()
        return self._stats

    def remove(self, name: str, record_id: Any) -> S:
        self._collections[name] = [r for r in self._collections[name] if r.get("id") != record_id]
        self._stats = self._compute()
        return self._stats

    def clear(self) -> S:
        return self.apply({name: [] for name in self._collections})

    def _compute(self) -> S:
        now = self._clock()
        return self._derive(self.snapshot(), now)
