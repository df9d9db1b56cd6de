"""
Ranked data sources for one collection.

Live tiers (an optimised procedure, then a manual multi-collection read)
are tried in order, each at most once. Built-in seed data is the last
resort and is the only source that marks the result as degraded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence

from portal_common.logging import get_logger
from portal_sync import metrics
from portal_sync.backend import Query, QueryResult, Record, apply_query
from portal_sync.errors import BackendError
from portal_sync.result import Err, Ok, Result

logger = get_logger(__name__)

SeedProvider = Callable[[], Sequence[Mapping[str, Any]]]

SEED_TIER = "seed"
SKIPPED_TIER = "skipped"
NO_TIER = "none"


@dataclass(frozen=True)
class FallbackTier:
    name: str
    fetch: Callable[[], Awaitable[Result[QueryResult]]]


@dataclass(frozen=True)
class Resolution:
    records: list[Record] = field(default_factory=list)
    total: int = 0
    tier: str = NO_TIER
    degraded: bool = False
    error: str | None = None

    @classmethod
    def skipped(cls) -> "Resolution":
        """Nothing to load for this caller (e.g. an admin-only collection)."""
        return cls(tier=SKIPPED_TIER)


class FallbackResolver:
    """Resolve one collection through its tiers."""

    def __init__(
        self,
        resource: str,
        collection: str,
        tiers: Sequence[FallbackTier],
        seed: SeedProvider | None = None,
        seed_query: Query | None = None,
    ) -> None:
        self.resource = resource
        self.collection = collection
        self.tiers = list(tiers)
        self.seed = seed
        self.seed_query = seed_query

    async def resolve(self) -> Resolution:
        last_error: str | None = None

        for tier in self.tiers:
            try:
                outcome = await tier.fetch()
            except BackendError as exc:
                outcome = Err(exc)
            except Exception as exc:
                outcome = Err(BackendError(f"{type(exc).__name__}: {exc}"))

            if isinstance(outcome, Ok):
                result = outcome.value
                total = result.total if result.total is not None else len(result.records)
                self._record(tier.name)
                return Resolution(records=list(result.records), total=total, tier=tier.name)

            last_error = outcome.error.message
            logger.warning(
                "fallback_tier_failed",
                resource=self.resource,
                collection=self.collection,
                tier=tier.name,
                kind=outcome.error.kind.value,
                error=outcome.error.message,
            )

        if self.seed is not None:
            try:
                seeded = apply_query(self.seed(), self.seed_query)
            except Exception as exc:
                logger.error(
                    "seed_provider_failed",
                    resource=self.resource,
                    collection=self.collection,
                    error=repr(exc),
                )
            else:
                logger.info(
                    "fallback_seed_data_used",
                    resource=self.resource,
                    collection=self.collection,
                    records=len(seeded.records),
                )
                self._record(SEED_TIER)
                return Resolution(
                    records=seeded.records,
                    total=seeded.total if seeded.total is not None else len(seeded.records),
                    tier=SEED_TIER,
                    degraded=True,
                )

        self._record(NO_TIER)
        message = f"Unable to load {self.collection}"
        if last_error:
            message = f"{message}: {last_error}"
        return Resolution(tier=NO_TIER, degraded=True, error=message)

    def _record(self, tier: str) -> None:
        metrics.fetch_resolutions.labels(
            resource=self.resource, collection=self.collection, tier=tier
        ).inc()


def left_join(
    base: Sequence[Mapping[str, Any]],
    lookup: Sequence[Mapping[str, Any]],
    base_key: str,
    lookup_key: str,
    attach_as: str,
    value_field: str | None = None,
    placeholder: Any = None,
) -> list[Record]:
    """Attach the first matching lookup row (or one of its fields) to each base row.

    Unmatched keys get ``placeholder``; they never raise.
    """
    index: dict[Any, Mapping[str, Any]] = {}
    for row in lookup:
        key = row.get(lookup_key)
        if key is not None and key not in index:
            index[key] = row

    joined: list[Record] = []
    for row in base:
        record = dict(row)
        match = index.get(row.get(base_key))
        if match is None:
            record[attach_as] = placeholder
        elif value_field is None:
            record[attach_as] = dict(match)
        else:
            value = match.get(value_field)
            record[attach_as] = placeholder if value is None else value
        joined.append(record)
    return joined
