"""Admin communications endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from portal_sync.resources.messages import MessagesStore
from web.dependencies import get_authorizer, get_backend, get_notifier
from web.responses import mutation_response, store_snapshot
from web.schemas import MessageIn, changes

router = APIRouter(prefix="/api/messages", tags=["messages"])


def messages_store(backend, authorizer, notifier, **filters) -> MessagesStore:
    return MessagesStore(backend, authorizer, notifier=notifier, auto_refresh=False, **filters)


@router.get("")
async def list_messages(
    type: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    search: str | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with messages_store(
        backend, authorizer, notifier, type=type, status=status, priority=priority, search=search
    ) as store:
        return store_snapshot(store, notifier)


@router.get("/{message_id}/delivery")
async def delivery_stats(
    message_id: str,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    store = messages_store(backend, authorizer, notifier)
    try:
        return asdict(await store.delivery_stats(message_id))
    finally:
        await store.close()


@router.post("")
async def create_message(
    body: MessageIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with messages_store(backend, authorizer, notifier) as store:
        result = await store.create(changes(body))
        return mutation_response(result, store, notifier)


@router.patch("/{message_id}")
async def update_message(
    message_id: str,
    body: MessageIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with messages_store(backend, authorizer, notifier) as store:
        result = await store.update(message_id, changes(body))
        return mutation_response(result, store, notifier)


@router.delete("/{message_id}")
async def delete_message(
    message_id: str,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with messages_store(backend, authorizer, notifier) as store:
        await store.delete(message_id)
        return mutation_response(None, store, notifier)


@router.post("/{message_id}/send")
async def send_message(
    message_id: str,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with messages_store(backend, authorizer, notifier) as store:
        result = await store.send(message_id)
        return mutation_response(result, store, notifier)
