"""Document API guarded by embedded fine-grained authorization."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from packages.api.config import Settings
from packages.api.security import add_security_headers
from packages.fga import EmbeddedFGA, FGASettings

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="ok when authorization is ready")
    version: str
    authorization: str = Field(description="Authorization handle state")


def create_app(settings: Settings | None = None, fga: EmbeddedFGA | None = None) -> FastAPI:
    """Build the application.

    Without ``fga`` the lifespan opens a handle from ``FGA_*`` environment
    settings on startup and closes it on shutdown. A handle passed in is
    used as is and left open.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned: EmbeddedFGA | None = None
        if app.state.fga is None:
            owned = await run_in_threadpool(EmbeddedFGA.open, FGASettings.from_env())
            app.state.fga = owned
        try:
            yield
        finally:
            if owned is not None:
                owned.close()
                app.state.fga = None

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.middleware("http")(add_security_headers)

    app.state.settings = settings
    app.state.fga = fga

    from packages.api.documents import router as documents_router

    app.include_router(documents_router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint (no auth required)."""
        handle: EmbeddedFGA | None = app.state.fga
        state = handle.state.value if handle is not None else "unconfigured"
        return HealthResponse(
            status="ok" if handle is not None and handle.is_ready else "degraded",
            version=settings.api_version,
            authorization=state,
        )

    return app


app = create_app()
