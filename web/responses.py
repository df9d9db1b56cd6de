"""Response payload helpers shared by the API routers."""

from dataclasses import asdict, is_dataclass
from typing import Any

from portal_sync.notify import CollectingNotifier
from portal_sync.store import ResourceStore


def store_snapshot(store: ResourceStore, notifier: CollectingNotifier | None = None, **extra: Any) -> dict:
    """Collections, statistics and status flags of an open store."""

    stats = store.stats
    payload: dict[str, Any] = dict(store.collections)
    payload.update(extra)
    payload["stats"] = asdict(stats) if is_dataclass(stats) else stats
    payload["using_fallback_data"] = store.using_fallback_data
    payload["error"] = store.error
    if notifier is not None:
        payload["notifications"] = [
            {"level": n.level.value, "message": n.message} for n in notifier.notifications
        ]
    return payload


def mutation_response(result: Any, store: ResourceStore, notifier: CollectingNotifier) -> dict:
    """Mutation result plus the store state the mutation left behind."""

    return {"result": result, **store_snapshot(store, notifier)}
