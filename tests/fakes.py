"""In-memory test doubles for the backend contract."""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from typing import Any, Callable, Mapping

from portal_common.utils import utcnow
from portal_sync.backend import CurrentUser, Query, QueryResult, Record, apply_query
from portal_sync.errors import BackendError

Procedure = Callable[[dict[str, Any]], Any]


class FakeBackend:
    """Records every call and serves tables from memory.

    ``fail(method, target)`` makes the next and all later calls to that
    method/target raise; ``procedures`` maps procedure names to plain or
    async callables taking the argument dict.
    """

    def __init__(
        self,
        tables: Mapping[str, list[Mapping[str, Any]]] | None = None,
        *,
        user: CurrentUser | None = None,
        procedures: Mapping[str, Procedure] | None = None,
    ) -> None:
        self.tables: dict[str, list[Record]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.user = user
        self.procedures: dict[str, Procedure] = dict(procedures or {})
        self.failures: dict[tuple[str, str], BackendError] = {}
        self.calls: Counter[str] = Counter()
        self.history: list[tuple[str, str, Any]] = []
        self.closed = False
        self._ids = 0

    # -- test controls --------------------------------------------------

    def fail(self, method: str, target: str, error: BackendError | None = None) -> None:
        self.failures[(method, target)] = error or BackendError(f"{method} {target} unavailable", status=500)

    def recover(self, method: str, target: str) -> None:
        self.failures.pop((method, target), None)

    def count(self, method: str, target: str | None = None) -> int:
        if target is not None:
            return self.calls[f"{method}:{target}"]
        return sum(n for key, n in self.calls.items() if key.startswith(f"{method}:"))

    def rows(self, collection: str) -> list[Record]:
        return self.tables.setdefault(collection, [])

    def _enter(self, method: str, target: str, payload: Any = None) -> None:
        self.calls[f"{method}:{target}"] += 1
        self.history.append((method, target, payload))
        error = self.failures.get((method, target))
        if error is not None:
            raise error

    # -- backend contract -----------------------------------------------

    async def query(self, collection: str, query: Query | None = None) -> QueryResult:
        self._enter("query", collection, query)
        if collection not in self.tables:
            raise BackendError(f'relation "public.{collection}" does not exist', code="42P01")
        result = apply_query(self.tables[collection], query)
        if query is not None and not query.count:
            return QueryResult(result.records, len(result.records))
        return result

    async def call(self, procedure: str, args: Mapping[str, Any] | None = None) -> Any:
        self._enter("call", procedure, dict(args or {}))
        handler = self.procedures.get(procedure)
        if handler is None:
            raise BackendError(
                f"Could not find the function public.{procedure} in the schema cache",
                code="PGRST202",
                status=404,
            )
        result = handler(dict(args or {}))
        if inspect.isawaitable(result):
            result = await result
        return result

    async def insert(self, collection: str, record: Mapping[str, Any]) -> Record:
        self._enter("insert", collection, dict(record))
        self._ids += 1
        now = utcnow().isoformat()
        row = {"id": f"{collection}-{self._ids}", "created_at": now, "updated_at": now, **record}
        self.rows(collection).insert(0, row)
        return dict(row)

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> Record:
        self._enter("update", collection, {"id": record_id, **patch})
        for row in self.rows(collection):
            if row.get("id") == record_id:
                row.update(patch)
                row["updated_at"] = utcnow().isoformat()
                return dict(row)
        raise BackendError(f"No {collection} record matched", code="PGRST116", status=404)

    async def delete(self, collection: str, record_id: str) -> None:
        self._enter("delete", collection, record_id)
        self.tables[collection] = [row for row in self.rows(collection) if row.get("id") != record_id]

    async def current_user(self) -> CurrentUser | None:
        return self.user

    async def aclose(self) -> None:
        self.closed = True


async def instant_sleep(seconds: float) -> None:
    """Sleep replacement that only yields to the event loop."""
    await asyncio.sleep(0)
