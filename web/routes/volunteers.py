"""Volunteer task board and application endpoints."""

from fastapi import APIRouter, Depends

from portal_sync.resources.volunteers import VolunteersStore
from web.dependencies import get_authorizer, get_backend, get_notifier
from web.responses import mutation_response, store_snapshot
from web.schemas import ApplicationIn, HoursIn, RejectIn, TaskIn, changes

router = APIRouter(prefix="/api/volunteers", tags=["volunteers"])


def volunteers_store(backend, authorizer, notifier, **filters) -> VolunteersStore:
    return VolunteersStore(backend, authorizer, notifier=notifier, auto_refresh=False, **filters)


@router.get("")
async def list_volunteer_work(
    category: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with volunteers_store(
        backend, authorizer, notifier, category=category, status=status, priority=priority
    ) as store:
        return store_snapshot(store, notifier)


@router.post("/tasks")
async def create_task(
    body: TaskIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with volunteers_store(backend, authorizer, notifier) as store:
        result = await store.create_task(changes(body))
        return mutation_response(result, store, notifier)


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    body: TaskIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with volunteers_store(backend, authorizer, notifier) as store:
        result = await store.update_task(task_id, changes(body))
        return mutation_response(result, store, notifier)


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with volunteers_store(backend, authorizer, notifier) as store:
        await store.delete_task(task_id)
        return mutation_response(None, store, notifier)


@router.post("/tasks/{task_id}/apply")
async def apply_for_task(
    task_id: str,
    body: ApplicationIn | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with volunteers_store(backend, authorizer, notifier) as store:
        result = await store.apply(task_id, (body or ApplicationIn()).message)
        return mutation_response(result, store, notifier)


@router.post("/applications/{application_id}/approve")
async def approve_application(
    application_id: str,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with volunteers_store(backend, authorizer, notifier) as store:
        result = await store.approve(application_id)
        return mutation_response(result, store, notifier)


@router.post("/applications/{application_id}/reject")
async def reject_application(
    application_id: str,
    body: RejectIn | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with volunteers_store(backend, authorizer, notifier) as store:
        result = await store.reject(application_id, (body or RejectIn()).reason)
        return mutation_response(result, store, notifier)


@router.post("/applications/{application_id}/hours")
async def log_hours(
    application_id: str,
    body: HoursIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with volunteers_store(backend, authorizer, notifier) as store:
        result = await store.log_hours(application_id, body.hours)
        return mutation_response(result, store, notifier)
