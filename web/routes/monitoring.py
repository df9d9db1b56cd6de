"""System monitoring endpoints (admin only)."""

from fastapi import APIRouter, Depends, HTTPException, Request

from portal_sync.authz import Permission
from portal_sync.resources.monitoring import MonitoringStore
from web.dependencies import get_authorizer, get_backend, get_notifier
from web.responses import mutation_response, store_snapshot
from web.schemas import LogIn, MetricIn, changes

router = APIRouter(prefix="/api/monitoring", tags=["monitoring"])


def monitoring_store(backend, authorizer, notifier, **filters) -> MonitoringStore:
    return MonitoringStore(backend, authorizer, notifier=notifier, auto_refresh=False, **filters)


@router.get("")
async def monitoring_overview(
    level: str | None = None,
    category: str | None = None,
    service: str | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with monitoring_store(
        backend, authorizer, notifier, level=level, category=category, service=service
    ) as store:
        return store_snapshot(store, notifier, recent_alerts=store.recent_alerts())


@router.get("/live")
async def live_overview(request: Request, authorizer=Depends(get_authorizer)):
    """Snapshot of the shared, auto-refreshing monitoring store."""

    authorizer.require(Permission.ADMIN)
    store: MonitoringStore | None = getattr(request.app.state, "monitoring", None)
    if store is None:
        raise HTTPException(status_code=404, detail="Live monitoring is not enabled")
    return store_snapshot(store, recent_alerts=store.recent_alerts())


@router.post("/logs")
async def create_log(
    body: LogIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with monitoring_store(backend, authorizer, notifier) as store:
        result = await store.create_log(changes(body))
        return mutation_response(result, store, notifier)


@router.post("/metrics")
async def create_metric(
    body: MetricIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with monitoring_store(backend, authorizer, notifier) as store:
        result = await store.create_metric(changes(body))
        return mutation_response(result, store, notifier)


@router.delete("/logs")
async def clear_old_logs(
    days_to_keep: int = 30,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with monitoring_store(backend, authorizer, notifier) as store:
        removed = await store.clear_old_logs(days_to_keep)
        return mutation_response({"removed": removed}, store, notifier)
