"""FastAPI entrypoint for the portal API."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.sessions import SessionMiddleware

from portal_common.config import get_settings
from portal_common.db import close_engine
from portal_common.logging import get_logger, setup_logging
from portal_sync.authz import Authorizer
from portal_sync.errors import (
    AuthorizationError,
    DuplicateRecordError,
    PermissionDeniedError,
    PortalError,
    RecordNotFoundError,
    SchemaUnavailableError,
    ValidationError,
)
from portal_sync.factory import open_backend
from portal_sync.resources.monitoring import MonitoringStore
from web.config import get_web_settings
from web.routes import events, members, messages, monitoring, session, volunteers

logger = get_logger(__name__)

_ERROR_STATUS = (
    (AuthorizationError, 403),
    (PermissionDeniedError, 403),
    (ValidationError, 422),
    (DuplicateRecordError, 409),
    (RecordNotFoundError, 404),
    (SchemaUnavailableError, 503),
)


def error_status(exc: PortalError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 502


async def start_shared_monitoring(app: FastAPI) -> None:
    """Open the auto-refreshing monitoring store served by ``/api/monitoring/live``."""

    email = get_web_settings().monitoring_user_email
    if not email:
        return
    backend = await open_backend(email=email)
    authorizer = await Authorizer.from_backend(backend, get_settings().sync.admin_roles)
    if not authorizer.is_admin:
        logger.warning("shared_monitoring_disabled", email=email, reason="not an admin")
        await backend.aclose()
        return
    store = MonitoringStore(backend, authorizer, auto_refresh=True)
    await store.open()
    app.state.monitoring = store
    app.state.monitoring_backend = backend
    logger.info("shared_monitoring_started", email=email)


async def stop_shared_monitoring(app: FastAPI) -> None:
    store = getattr(app.state, "monitoring", None)
    if store is None:
        return
    await store.close()
    await app.state.monitoring_backend.aclose()
    app.state.monitoring = None
    logger.info("shared_monitoring_stopped")


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - app bootstrap
    setup_logging(get_settings().logging)
    await start_shared_monitoring(app)
    try:
        yield
    finally:
        await stop_shared_monitoring(app)
        await close_engine()


def create_app(*, shared_monitoring: bool = True) -> FastAPI:
    settings = get_web_settings()
    if settings.trust_user_header:
        logger.warning("user_header_trusted", header=settings.user_header)

    app = FastAPI(
        title=f"{settings.brand_name} API",
        description="Members, volunteers, monitoring, communications and events",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan if shared_monitoring else None,
    )

    app.include_router(session.router)
    app.include_router(members.router)
    app.include_router(volunteers.router)
    app.include_router(monitoring.router)
    app.include_router(messages.router)
    app.include_router(events.router)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        https_only=False,
        max_age=60 * 60 * 24 * 7,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
        status_code = error_status(exc)
        if status_code >= 500:
            logger.warning("request_failed", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=status_code, content={"detail": exc.message})

    @app.get("/healthz")
    async def healthcheck() -> dict:
        return {"status": "ok"}

    if get_settings().metrics.enabled:

        @app.get(get_settings().metrics.path, include_in_schema=False)
        async def metrics_prometheus():
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
