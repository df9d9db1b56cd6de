"""Remote accessor: backend reads that return results instead of raising."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from portal_common.logging import get_logger
from portal_sync.backend import Backend, Query, QueryResult
from portal_sync.errors import BackendError
from portal_sync.result import Err, Ok, Result

logger = get_logger(__name__)


class RemoteAccessor:
    """Wraps a :class:`Backend` so read failures become :class:`Err` values."""

    def __init__(self, backend: Backend) -> None:
        self.backend = backend

    async def fetch(self, collection: str, query: Query | None = None) -> Result[QueryResult]:
        try:
            result = await self.backend.query(collection, query)
        except BackendError as exc:
            return Err(exc)
        except Exception as exc:  # pragma: no cover - adapter bugs surface as tier failures
            logger.warning("accessor_unexpected_error", collection=collection, error=repr(exc))
            return Err(BackendError(f"{type(exc).__name__}: {exc}"))

        if not isinstance(result, QueryResult) or not _all_mappings(result.records):
            return Err(BackendError(f"Malformed response for {collection}"))
        return Ok(result)

    async def call_records(
        self, procedure: str, args: Mapping[str, Any] | None = None
    ) -> Result[QueryResult]:
        """Call a procedure that is expected to return a list of records."""
        outcome = await self.call(procedure, args)
        if isinstance(outcome, Err):
            return outcome

        payload = outcome.value
        if isinstance(payload, Mapping) and payload.get("success") is False:
            return Err(BackendError(str(payload.get("error") or f"{procedure} failed")))
        if not isinstance(payload, list) or not _all_mappings(payload):
            return Err(BackendError(f"Malformed response from {procedure}: expected a list of records"))
        records = [dict(item) for item in payload]
        return Ok(QueryResult(records, len(records)))

    async def call(self, procedure: str, args: Mapping[str, Any] | None = None) -> Result[Any]:
        try:
            return Ok(await self.backend.call(procedure, dict(args or {})))
        except BackendError as exc:
            return Err(exc)
        except Exception as exc:  # pragma: no cover - adapter bugs surface as tier failures
            logger.warning("accessor_unexpected_error", procedure=procedure, error=repr(exc))
            return Err(BackendError(f"{type(exc).__name__}: {exc}"))


def _all_mappings(items: Any) -> bool:
    return isinstance(items, list) and all(isinstance(item, Mapping) for item in items)
