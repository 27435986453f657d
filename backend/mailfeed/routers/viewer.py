"""
Email viewer router.

Endpoints:
  GET /                     - viewer page (sweeps expired logs first)
  GET /api/emails           - latest feed as JSON (the poll surface)
  GET /api/emails/stream    - server-sent events, one `feed` event per rebuild

All three accept ?selected=<id>. The id is kept if it is still in the feed,
otherwise the newest email is selected.
"""

import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, StreamingResponse

from mailfeed.config import Settings
from mailfeed.deps import get_log_store, get_settings
from mailfeed.errors import PersistenceFailure
from mailfeed.models.webhook_log import FeedState, WebhookRecord
from mailfeed.services.feed import FEED_LIMIT, reconcile
from mailfeed.services.feed_session import FeedSession
from mailfeed.services.log_store import LogStore
from mailfeed.services.presentation import render_email_detail, render_email_list, render_page
from mailfeed.services.retention import purge_expired_logs
from mailfeed.services.selection import resolve_selection

logger = logging.getLogger(__name__)

router = APIRouter()


async def _load_snapshot(store: LogStore) -> list[WebhookRecord]:
    """Latest FEED_LIMIT logs, or [] when the store is unreachable."""
    try:
        return await store.select_recent(FEED_LIMIT)
    except PersistenceFailure as exc:
        logger.error(f"Failed to fetch Novu webhook logs: {exc}")
        return []


def _build_state(records: list[WebhookRecord], selected: Optional[int]) -> FeedState:
    emails = reconcile(records)
    return FeedState(emails=emails, selected_id=resolve_selection(emails, selected))


def encode_feed_event(state: FeedState, tz: str, detail_changed: bool) -> str:
    """Serialise one feed rebuild as a server-sent event."""
    body = state.to_api()
    body["list_html"] = render_email_list(state, tz)
    body["detail_html"] = render_email_detail(state, tz)
    body["detail_changed"] = detail_changed
    return f"event: feed\ndata: {json.dumps(body, ensure_ascii=False)}\n\n"


async def feed_events(
    session: FeedSession,
    selected: Optional[int],
    tz: str,
    is_disconnected: Callable[[], Awaitable[bool]],
) -> AsyncIterator[str]:
    """
    Start `session` and encode one feed event per state until the client
    disconnects. The session is always closed on the way out.
    """
    await session.start()
    last_selected = selected
    try:
        async for state in session.states():
            if await is_disconnected():
                break
            yield encode_feed_event(state, tz, state.selected_id != last_selected)
            last_selected = state.selected_id
    finally:
        await session.close()


@router.get("/", response_class=HTMLResponse)
async def email_viewer(
    selected: Optional[int] = Query(None),
    store: LogStore = Depends(get_log_store),
    settings: Settings = Depends(get_settings),
) -> HTMLResponse:
    await purge_expired_logs(store)
    state = _build_state(await _load_snapshot(store), selected)
    return HTMLResponse(render_page(state, settings.display_timezone))


@router.get("/api/emails")
async def list_emails(
    selected: Optional[int] = Query(None),
    store: LogStore = Depends(get_log_store),
) -> dict:
    try:
        records = await store.select_recent(FEED_LIMIT)
    except PersistenceFailure as exc:
        logger.error(f"Failed to refresh Novu webhook logs: {exc}")
        raise HTTPException(status_code=503, detail="Failed to fetch email logs")

    return _build_state(records, selected).to_api()


@router.get("/api/emails/stream")
async def stream_emails(
    request: Request,
    selected: Optional[int] = Query(None),
    store: LogStore = Depends(get_log_store),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """
    Live feed for one open viewer.

    Each connection gets its own FeedSession (poll timer + insert
    subscription). The session is closed when the client goes away.
    """
    snapshot = await _load_snapshot(store)
    session = FeedSession(
        store,
        snapshot,
        selected_id=selected,
        poll_interval=settings.poll_interval_seconds,
    )
    return StreamingResponse(
        feed_events(session, selected, settings.display_timezone, request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
