"""Common FastAPI dependencies for the portal API."""

from collections.abc import AsyncGenerator

from fastapi import Depends, Request

from portal_common.config import get_settings
from portal_common.logging import bind_actor
from portal_sync.authz import Authorizer
from portal_sync.backend import Backend
from portal_sync.factory import open_backend
from portal_sync.notify import CollectingNotifier
from web.config import WebSettings, get_web_settings


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def caller_email(request: Request, settings: WebSettings | None = None) -> str | None:
    """Email of the signed-in member; the user header counts only when explicitly trusted."""

    settings = settings or get_web_settings()
    if settings.trust_user_header:
        email = request.headers.get(settings.user_header)
        if email:
            return email
    return request.session.get("email")


async def get_backend(request: Request) -> AsyncGenerator[Backend, None]:
    """Yield a backend acting as the caller and close it after the request."""

    backend = await open_backend(email=caller_email(request), access_token=bearer_token(request))
    try:
        yield backend
    finally:
        await backend.aclose()


async def get_authorizer(request: Request, backend: Backend = Depends(get_backend)) -> Authorizer:
    authorizer = await Authorizer.from_backend(backend, get_settings().sync.admin_roles)
    user = authorizer.user
    bind_actor(user.id if user else None, path=request.url.path)
    return authorizer


def get_notifier() -> CollectingNotifier:
    """Per-request notification buffer, returned to the client with the response."""

    return CollectingNotifier()
