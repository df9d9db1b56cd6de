"""Member directory and membership workflow endpoints."""

from fastapi import APIRouter, Depends

from portal_sync.resources.members import MembersStore
from web.dependencies import get_authorizer, get_backend, get_notifier
from web.responses import mutation_response, store_snapshot
from web.schemas import ApproveIn, InvitationIn, MemberPatch, RejectIn, changes

router = APIRouter(prefix="/api/members", tags=["members"])


def members_store(backend, authorizer, notifier, **filters) -> MembersStore:
    return MembersStore(backend, authorizer, notifier=notifier, auto_refresh=False, **filters)


@router.get("")
async def list_members(
    status: str | None = None,
    college: str | None = None,
    role: str | None = None,
    search: str | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with members_store(backend, authorizer, notifier, status=status, college=college) as store:
        return store_snapshot(
            store,
            notifier,
            members=store.filter_members(search=search, role=role),
            pending_requests=store.pending_requests(),
        )


@router.post("/invitations")
async def create_invitation(
    body: InvitationIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with members_store(backend, authorizer, notifier) as store:
        result = await store.create_invitation(changes(body))
        return mutation_response(result, store, notifier)


@router.post("/requests")
async def create_request(
    body: InvitationIn,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with members_store(backend, authorizer, notifier) as store:
        result = await store.create_request(changes(body))
        return mutation_response(result, store, notifier)


@router.post("/invitations/{invitation_id}/approve")
async def approve_invitation(
    invitation_id: str,
    body: ApproveIn | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with members_store(backend, authorizer, notifier) as store:
        result = await store.approve(invitation_id, role=(body or ApproveIn()).role)
        return mutation_response(result, store, notifier)


@router.post("/invitations/{invitation_id}/reject")
async def reject_invitation(
    invitation_id: str,
    body: RejectIn | None = None,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with members_store(backend, authorizer, notifier) as store:
        result = await store.reject(invitation_id, reason=(body or RejectIn()).reason)
        return mutation_response(result, store, notifier)


@router.patch("/{member_id}")
async def update_member(
    member_id: str,
    body: MemberPatch,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with members_store(backend, authorizer, notifier) as store:
        result = await store.update(member_id, changes(body))
        return mutation_response(result, store, notifier)


@router.delete("/{member_id}")
async def delete_member(
    member_id: str,
    backend=Depends(get_backend),
    authorizer=Depends(get_authorizer),
    notifier=Depends(get_notifier),
):
    async with members_store(backend, authorizer, notifier) as store:
        await store.delete(member_id)
        return mutation_response(None, store, notifier)
