"""
Mailfeed Backend API
FastAPI application receiving signed Novu email webhooks and serving a
live viewer of the stored emails.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException

from mailfeed.auth import basic_auth_middleware
from mailfeed.config import Settings, load_settings
from mailfeed.deps import get_log_store
from mailfeed.errors import PersistenceFailure
from mailfeed.routers import viewer, webhook
from mailfeed.services.log_store import InMemoryLogStore, LogStore, SupabaseLogStore

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


async def open_log_store(settings: Settings) -> LogStore:
    """Create the store selected by LOG_STORE_BACKEND."""
    if settings.log_store_backend == "memory":
        logger.warning("Using the in-memory log store; logs are lost on restart")
        return InMemoryLogStore()
    return await SupabaseLogStore.connect(
        settings.supabase_url, settings.supabase_key, settings.log_table
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Open the log store for the lifetime of the process (unless one was
    injected into create_app) and close it on shutdown.
    """
    owns_store = app.state.log_store is None
    if owns_store:
        app.state.log_store = await open_log_store(app.state.settings)

    logger.info(
        f"Mailfeed ready (store={type(app.state.log_store).__name__}, "
        f"table={app.state.settings.log_table!r})"
    )
    try:
        yield
    finally:
        if owns_store:
            await app.state.log_store.close()
            app.state.log_store = None


def create_app(
    settings: Optional[Settings] = None,
    log_store: Optional[LogStore] = None,
) -> FastAPI:
    settings = settings or load_settings()
    logging.getLogger().setLevel(settings.log_level)

    app = FastAPI(
        title="Mailfeed API",
        description="Signed Novu email webhook receiver and live email viewer",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.log_store = log_store

    app.middleware("http")(basic_auth_middleware(settings))

    app.include_router(webhook.router, tags=["webhook"])
    app.include_router(viewer.router, tags=["viewer"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/health/db")
    async def health_db(store: LogStore = Depends(get_log_store)):
        """
        Test the log store connection with a one-row select.
        Returns 503 on failure.
        """
        try:
            await store.select_recent(1)
            return {"status": "ok", "database": "reachable"}
        except PersistenceFailure as exc:
            logger.error(f"Database health check failed: {exc}")
            raise HTTPException(
                status_code=503,
                detail=f"Database connection failed: {str(exc)}",
            )

    return app


app = create_app()
