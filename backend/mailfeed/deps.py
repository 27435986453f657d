"""
FastAPI dependencies for the app-scoped settings and log store.

Both live on app.state; main.create_app() puts them there (the store either
injected directly or opened in the lifespan handler).
"""

from fastapi import HTTPException, Request

from mailfeed.config import Settings
from mailfeed.services.log_store import LogStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_log_store(request: Request) -> LogStore:
    store = getattr(request.app.state, "log_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Log store unavailable")
    return store
