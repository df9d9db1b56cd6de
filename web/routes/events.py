"""Event listing, management and registration endpoints."""

from fastapi import APIRouter, Depends, Query

from portal_sync.resources.events import DEFAULT_PAGE_SIZE, EventsStore
from web.dependencies import get_authorizer, get_backend, get_notifier
from web.responses import mutation_response, store_snapshot
from web.schemas import EventIn, RegistrationIn, changes

router = APIRouter(prefix="/api/events", tags=["events"])


def events_store(backend, authorizer, notifier, **filters) -> EventsStore:
    return EventsStore(backend, authorizer, notifier=notifier, auto_refresh=False, **filters)


def page_info(store: EventsStore) -> dict:
    return {
        "page": store.page,
        "limit": store.limit,
        "total": store.total(),
        "total_pages": store.total_pages,
    }


@router.get("")
async def list_events(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    sort_by: str = "date",
    descending: bool = False,
    type: str | None = None,
    category: str | None = None,
    status: str | None = None,
    featured: bool | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    search: str | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with events_store(
        backend,
        authorizer,
        notifier,
        page=page,
        limit=limit,
        sort_by=sort_by,
        descending=descending,
        type=type,
        category=category,
        status=status,
        featured=featured,
        date_from=date_from,
        date_to=date_to,
        search=search,
    ) as store:
        return store_snapshot(store, notifier, **page_info(store))


@router.post("")
async def create_event(
    body: EventIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with events_store(backend, authorizer, notifier) as store:
        result = await store.create(changes(body))
        return mutation_response(result, store, notifier)


@router.patch("/{event_id}")
async def update_event(
    event_id: str,
    body: EventIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    # drafts are not in the default listing; load every status so ownership can be checked
    async with events_store(backend, authorizer, notifier, status="all", limit=100) as store:
        result = await store.update(event_id, changes(body))
        return mutation_response(result, store, notifier)


@router.delete("/{event_id}")
async def delete_event(
    event_id: str,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with events_store(backend, authorizer, notifier, status="all", limit=100) as store:
        await store.delete(event_id)
        return mutation_response(None, store, notifier)


@router.post("/{event_id}/register")
async def register_for_event(
    event_id: str,
    body: RegistrationIn | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with events_store(backend, authorizer, notifier) as store:
        result = await store.register(event_id, (body or RegistrationIn()).special_requirements)
        return mutation_response(result, store, notifier)


@router.delete("/{event_id}/register")
async def cancel_registration(
    event_id: str,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with events_store(backend, authorizer, notifier) as store:
        result = await store.cancel_registration(event_id)
        return mutation_response(result, store, notifier)
