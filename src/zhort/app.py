"""Application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import async_sessionmaker

from zhort.admin.router import router as admin_router
from zhort.audit.log import build_audit_trail, build_security_event_log
from zhort.auth.gate import AuthorizationGate
from zhort.auth.passkeys.router import passkeys_router, session_router
from zhort.auth.passkeys.router import router as passkey_router
from zhort.config import Settings
from zhort.db.base import Base
from zhort.db.engine import create_async_engine_from_settings
from zhort.links.router import router as links_router
from zhort.obs.setup import configure_logging, init_observability
from zhort.version import __version__ as ZHORT_VERSION

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application: auth core, DB, guarded routes."""
    if settings is None:
        settings = Settings()
    configure_logging(settings.log_level)

    # --- database (async) ---
    async_engine = create_async_engine_from_settings(settings)

    # Import models so they register with Base.metadata before create_all.
    import zhort.audit.models  # noqa: F401
    import zhort.auth.models  # noqa: F401
    import zhort.links.models  # noqa: F401

    async_session_factory = async_sessionmaker(async_engine, expire_on_commit=False)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        async with async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        admins = settings.superadmin_allowlist()
        if not admins:
            logger.warning("ZHORT_SUPER_ADMINS is empty; admin routes will deny everyone")
        yield
        await async_engine.dispose()

    app = FastAPI(
        title="zhort",
        description="Zhort link service: passkey authentication and guarded administration",
        version=ZHORT_VERSION,
        lifespan=lifespan,
    )

    # Store on app.state for dependency access.
    app.state.settings = settings
    app.state.async_engine = async_engine
    app.state.async_session_factory = async_session_factory
    app.state.gate = AuthorizationGate(settings.superadmin_allowlist())
    app.state.security_events = build_security_event_log(async_session_factory)
    app.state.audit_trail = build_audit_trail(async_session_factory)

    init_observability(app)

    # --- routers ---
    app.include_router(passkey_router)
    app.include_router(passkeys_router)
    app.include_router(session_router)
    app.include_router(admin_router)
    app.include_router(links_router)

    # --- default routes ---
    class RootResponse(BaseModel):
        message: str = Field(..., description="Welcome message.")

    class HealthResponse(BaseModel):
        status: str = Field(..., description="Health status string.")

    @app.get(
        "/",
        response_model=RootResponse,
        summary="Welcome",
        description="Default root route.",
    )
    def root() -> RootResponse:
        return RootResponse(message="Welcome to Zhort!")

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health",
        description="Basic health check for the app.",
    )
    def health() -> HealthResponse:
        return HealthResponse(status="healthy")

    return app
