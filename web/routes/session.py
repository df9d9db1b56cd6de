"""Cookie session for browser clients of the self-hosted backend."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from portal_common.config import get_settings
from portal_sync.factory import authenticate
from web.dependencies import get_authorizer
from web.schemas import SessionIn

router = APIRouter(prefix="/api/session", tags=["session"])


@router.get("")
async def current_session(authorizer=Depends(get_authorizer)):
    user = authorizer.user
    if user is None:
        return {"authenticated": False, "user": None}
    return {
        "authenticated": True,
        "user": {"id": user.id, "email": user.email, "roles": list(user.roles)},
        "is_admin": authorizer.is_admin,
    }


@router.post("")
async def start_session(request: Request, body: SessionIn):
    if get_settings().backend.mode != "sql":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Sessions are only used with the self-hosted backend; send a bearer token instead",
        )
    user = await authenticate(body.email, body.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    request.session.clear()
    request.session["email"] = user.email
    return {"authenticated": True, "user": {"id": user.id, "email": user.email, "roles": list(user.roles)}}


@router.delete("")
async def end_session(request: Request):
    request.session.clear()
    return {"authenticated": False}
