"""
Resource store base class.

A store is what a UI view holds while it is on screen: it owns the
collections and derived statistics for one feature area, reloads them
through the fallback tiers, runs mutations through the orchestrator and,
for monitoring-style resources, keeps itself current with an auto-refresh
loop. Open it (or use ``async with``) when the view mounts and close it
when the view goes away.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, Mapping, Sequence, TypeVar

from portal_common.config import SyncSettings, get_settings
from portal_common.logging import get_logger
from portal_sync import metrics
from portal_sync.accessor import RemoteAccessor
from portal_sync.authz import Authorizer
from portal_sync.backend import Backend, Query, Record
from portal_sync.fallback import FallbackResolver, FallbackTier, Resolution, SeedProvider
from portal_sync.notify import LogNotifier, NotificationLevel, Notifier
from portal_sync.orchestrator import LocalPatch, Mutation, MutationOrchestrator
from portal_sync.reconciler import FilterCriteria, StateReconciler, filter_records
from portal_sync.refresh import AutoRefreshDriver
from portal_sync.seeds import default_seeds

logger = get_logger(__name__)

S = TypeVar("S")


class ResourceStore(Generic[S]):
    """Base class for the per-resource stores."""

    resource: str = "resource"
    collection_names: tuple[str, ...] = ()
    auto_refresh_default: bool = False

    def __init__(
        self,
        backend: Backend,
        authorizer: Authorizer,
        *,
        notifier: Notifier | None = None,
        seeds: Mapping[str, SeedProvider] | None = None,
        settings: SyncSettings | None = None,
        optimistic: bool | None = None,
        auto_refresh: bool | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.authorizer = authorizer
        self.settings = settings or get_settings().sync
        self.notifier = notifier or LogNotifier(self.resource)
        self.accessor = RemoteAccessor(backend)
        self._seeds = dict(default_seeds() if seeds is None else seeds)

        self._reconciler: StateReconciler[S] = StateReconciler(self.derive, self.collection_names)
        self._totals: dict[str, int] = {name: 0 for name in self.collection_names}
        self._orchestrator = MutationOrchestrator(
            self.resource,
            authorizer,
            self.notifier,
            reload=self.refresh,
            optimistic=self.settings.optimistic_updates if optimistic is None else optimistic,
            apply_patch=self._apply_patch,
            spawn=self._spawn,
        )

        self._generation = 0
        self._inflight = 0
        self._opened = False
        self._closed = False
        self._degraded = False
        self._error: str | None = None
        self._background: set[asyncio.Task] = set()

        enabled = self.auto_refresh_default if auto_refresh is None else auto_refresh
        self._driver: AutoRefreshDriver | None = None
        if enabled:
            self._driver = AutoRefreshDriver(
                self.resource,
                self.refresh,
                self.settings.refresh_interval_sec,
                self.can_auto_refresh,
                sleep=sleep,
            )

    # -- subclass hooks -------------------------------------------------

    def derive(self, collections: Mapping[str, list[Record]], now: datetime) -> S:
        raise NotImplementedError

    async def load(self) -> dict[str, Resolution]:
        """Resolve every collection of this store."""
        raise NotImplementedError

    def can_auto_refresh(self) -> bool:
        return not self._closed and self.authorizer.is_authenticated

    # -- state ----------------------------------------------------------

    @property
    def collection(self) -> list[Record]:
        """The primary collection."""
        return self._reconciler.get(self.collection_names[0])

    @property
    def collections(self) -> dict[str, list[Record]]:
        return self._reconciler.snapshot()

    @property
    def stats(self) -> S:
        return self._reconciler.stats

    @property
    def is_loading(self) -> bool:
        return self._inflight > 0

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def using_fallback_data(self) -> bool:
        return self._degraded

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    @property
    def auto_refresh_running(self) -> bool:
        return self._driver is not None and self._driver.running

    def total(self, name: str | None = None) -> int:
        return self._totals[name or self.collection_names[0]]

    def filter(self, criteria: FilterCriteria | None = None, collection: str | None = None) -> list[Record]:
        """Pure client-side filter over a collection (primary by default)."""
        return filter_records(self._reconciler.get(collection or self.collection_names[0]), criteria)

    # -- lifecycle ------------------------------------------------------

    async def open(self) -> "ResourceStore[S]":
        if self._closed:
            raise RuntimeError(f"{self.resource} store is closed")
        if self._opened:
            return self
        self._opened = True
        await self.refresh()
        if self._driver is not None and self.can_auto_refresh():
            self._driver.start()
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._driver is not None:
            await self._driver.stop()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        if self._degraded:
            metrics.degraded_stores.dec()
        logger.debug("store_closed", resource=self.resource)

    async def __aenter__(self) -> "ResourceStore[S]":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -- loading --------------------------------------------------------

    async def refresh(self) -> None:
        """Reload every collection; only the newest reload may update state."""
        if self._closed:
            return
        self._generation += 1
        token = self._generation
        self._inflight += 1
        started = time.perf_counter()
        try:
            resolutions = await self.load()
        finally:
            self._inflight -= 1
            metrics.refresh_duration.labels(resource=self.resource).observe(time.perf_counter() - started)

        if self._closed or token != self._generation:
            logger.debug("stale_refresh_discarded", resource=self.resource, generation=token)
            return
        self._apply(resolutions)

    def _apply(self, resolutions: Mapping[str, Resolution]) -> None:
        self._reconciler.apply({name: res.records for name, res in resolutions.items()})
        for name, res in resolutions.items():
            self._totals[name] = res.total

        degraded = any(res.degraded and res.error is None for res in resolutions.values())
        errors = [res.error for res in resolutions.values() if res.error]

        if degraded and not self._degraded:
            metrics.degraded_stores.inc()
            self.notifier.notify(
                NotificationLevel.INFO,
                f"Showing sample {self.resource} data while the live service is unavailable.",
            )
        elif self._degraded and not degraded:
            metrics.degraded_stores.dec()
        self._degraded = degraded

        self._error = "; ".join(errors) if errors else None
        if self._error:
            self.notifier.notify(NotificationLevel.ERROR, f"Failed to load {self.resource}: {self._error}")

        logger.info(
            "store_refreshed",
            resource=self.resource,
            tiers={name: res.tier for name, res in resolutions.items()},
            counts={name: len(res.records) for name, res in resolutions.items()},
            degraded=degraded,
        )

    def resolver(
        self,
        collection: str,
        tiers: Sequence[FallbackTier],
        seed_query: Query | None = None,
    ) -> FallbackResolver:
        seed = self._seeds.get(collection) if self.settings.seed_fallback_enabled else None
        return FallbackResolver(self.resource, collection, tiers, seed=seed, seed_query=seed_query)

    def table_tier(self, collection: str, query: Query, name: str = "table") -> FallbackTier:
        return FallbackTier(name, lambda: self.accessor.fetch(collection, query))

    # -- mutations ------------------------------------------------------

    async def execute(self, mutation: Mutation) -> Any:
        return await self._orchestrator.execute(mutation)

    def find(self, record_id: str, collection: str | None = None) -> Record | None:
        for record in self._reconciler.get(collection or self.collection_names[0]):
            if record.get("id") == record_id:
                return record
        return None

    def _apply_patch(self, patch: LocalPatch) -> None:
        if self._closed:
            return
        if patch.upsert is not None:
            self._reconciler.upsert(patch.collection, patch.upsert)
        if patch.remove_id is not None:
            self._reconciler.remove(patch.collection, patch.remove_id)

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
