"""
Viewer tests: page rendering, the JSON poll surface, stream event encoding
and the health checks.

The app is built with an injected InMemoryLogStore seeded relative to the
real current time, since the routes reconcile against "now".
"""

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi.testclient import TestClient

from mailfeed.config import Settings
from mailfeed.errors import PersistenceFailure
from mailfeed.main import create_app
from mailfeed.models.webhook_log import CapturedHeaders, FeedState, NewWebhookRecord, WebhookRecord
from mailfeed.routers.viewer import encode_feed_event, feed_events
from mailfeed.services.feed_session import FeedSession
from mailfeed.services.log_store import InMemoryLogStore
from mailfeed.services.presentation import (
    format_received_at,
    render_email_detail,
    render_email_list,
)

SETTINGS = Settings(
    novu_webhook_secret="secret",
    basic_auth_user="admin",
    basic_auth_pass="s3cret",
    log_store_backend="memory",
    display_timezone="Asia/Tokyo",
)
AUTH = {"Authorization": "Basic " + base64.b64encode(b"admin:s3cret").decode()}


def _ago(**delta) -> str:
    return (datetime.now(timezone.utc) - timedelta(**delta)).isoformat()


def _row(record_id: int, received_at, **data) -> dict:
    return {"id": record_id, "received_at": received_at, "headers": {}, "data": data}


@pytest.fixture()
def store():
    return InMemoryLogStore(rows=[
        _row(1, _ago(hours=2), subject="Older", **{"from": "a@x.com"}, to="b@y.com", html="<p>one</p>"),
        _row(2, _ago(minutes=5), subject="Newer", to=[{"email": "c@z.com"}], html=""),
        _row(3, _ago(days=4), subject="Expired"),
    ])


@pytest.fixture()
def client(store):
    return TestClient(create_app(SETTINGS, log_store=store))


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------

class TestFormatReceivedAt:
    def test_converts_to_display_zone(self):
        assert format_received_at("2026-10-17T12:05:00+00:00", "Asia/Tokyo") == "2026/10/17 21:05"

    def test_utc_default(self):
        assert format_received_at("2026-10-17T12:05:00Z") == "2026/10/17 12:05"

    def test_none_is_empty(self):
        assert format_received_at(None) == ""

    def test_unparseable_is_returned_as_is(self):
        assert format_received_at("yesterday") == "yesterday"

    def test_out_of_range_local_time_is_returned_as_is(self):
        value = "9999-12-31T23:59:00+00:00"
        assert format_received_at(value, "Asia/Tokyo") == value


class TestRenderFragments:
    def _state(self, **data) -> FeedState:
        record = WebhookRecord(id=5, received_at=None, data=data)
        return FeedState(emails=[record], selected_id=5)

    def test_empty_list_message(self):
        html = render_email_list(FeedState())
        assert "保存されたメールがありません。" in html
        assert "0件" in html

    def test_list_item_escapes_values(self):
        html = render_email_list(self._state(subject="<b>x</b>", **{"from": "a&b@x.com"}))
        assert "&lt;b&gt;x&lt;/b&gt;" in html
        assert "a&amp;b@x.com" in html
        assert 'href="/?selected=5"' in html
        assert "email active" in html

    def test_to_line_omitted_when_empty(self):
        assert "To:" not in render_email_list(self._state(subject="s"))

    def test_detail_embeds_html_in_sandboxed_iframe(self):
        html = render_email_detail(self._state(html='<p class="x">hi</p>'))
        assert 'sandbox="allow-same-origin"' in html
        assert 'srcdoc="&lt;p class=&quot;x&quot;&gt;hi&lt;/p&gt;"' in html

    def test_detail_empty_body_placeholder(self):
        html = render_email_detail(self._state(html=""))
        assert "HTML ボディが空です。" in html
        assert "<iframe" not in html

    def test_detail_subject_placeholder(self):
        assert "(no subject)" in render_email_detail(self._state())

    def test_nothing_selected(self):
        assert "メールが選択されていません。" in render_email_detail(FeedState())


# ---------------------------------------------------------------------------
# GET /
# ---------------------------------------------------------------------------

class TestViewerPage:
    def test_requires_auth(self, client):
        assert client.get("/").status_code == 401

    def test_renders_feed_and_sweeps_expired(self, client, store):
        response = client.get("/", headers=AUTH)

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        body = response.text
        assert "Newer" in body and "Older" in body
        assert "Expired" not in body
        assert "2件" in body
        assert sorted(r["id"] for r in store.rows) == [1, 2]

    def test_selects_newest_by_default(self, client):
        body = client.get("/", headers=AUTH).text
        assert 'EventSource("/api/emails/stream?selected=2")' in body
        assert "HTML ボディが空です。" in body

    def test_honours_selected_query(self, client):
        body = client.get("/?selected=1", headers=AUTH).text
        assert 'EventSource("/api/emails/stream?selected=1")' in body
        assert "&lt;p&gt;one&lt;/p&gt;" in body

    def test_unknown_selection_falls_back(self, client):
        body = client.get("/?selected=999", headers=AUTH).text
        assert 'EventSource("/api/emails/stream?selected=2")' in body

    def test_store_failure_renders_empty_feed(self):
        store = Mock()
        store.delete_older_than = AsyncMock(side_effect=PersistenceFailure("down"))
        store.select_recent = AsyncMock(side_effect=PersistenceFailure("down"))
        client = TestClient(create_app(SETTINGS, log_store=store))

        response = client.get("/", headers=AUTH)

        assert response.status_code == 200
        assert "保存されたメールがありません。" in response.text


# ---------------------------------------------------------------------------
# GET /api/emails
# ---------------------------------------------------------------------------

class TestListEmails:
    def test_returns_reconciled_feed(self, client):
        data = client.get("/api/emails", headers=AUTH).json()

        assert [e["id"] for e in data["emails"]] == [2, 1]
        assert data["selected_id"] == 2
        assert data["emails"][1]["data"]["from"] == "a@x.com"

    def test_selected_query(self, client):
        assert client.get("/api/emails?selected=1", headers=AUTH).json()["selected_id"] == 1

    def test_store_failure_returns_503(self):
        store = Mock()
        store.select_recent = AsyncMock(side_effect=PersistenceFailure("down"))
        client = TestClient(create_app(SETTINGS, log_store=store))

        assert client.get("/api/emails", headers=AUTH).status_code == 503


# ---------------------------------------------------------------------------
# Stream event encoding
# ---------------------------------------------------------------------------

class TestEncodeFeedEvent:
    def test_event_format(self):
        state = FeedState(
            emails=[WebhookRecord(id=1, received_at=None, data={"subject": "件名"})],
            selected_id=1,
        )

        event = encode_feed_event(state, "UTC", detail_changed=True)

        assert event.startswith("event: feed\ndata: ")
        assert event.endswith("\n\n")
        body = json.loads(event[len("event: feed\ndata: "):].strip())
        assert body["selected_id"] == 1
        assert body["detail_changed"] is True
        assert "件名" in body["list_html"]
        assert "件名" in body["detail_html"]


# ---------------------------------------------------------------------------
# GET /api/emails/stream
# ---------------------------------------------------------------------------

def _decode_event(event: str) -> dict:
    assert event.startswith("event: feed\ndata: ")
    return json.loads(event[len("event: feed\ndata: "):].strip())


def _new(subject: str) -> NewWebhookRecord:
    return NewWebhookRecord(
        received_at=datetime.now(timezone.utc).isoformat(),
        headers=CapturedHeaders(),
        data={"subject": subject},
    )


class TestFeedEvents:
    async def _open(self, selected):
        store = InMemoryLogStore(rows=[_row(1, _ago(minutes=10), subject="First")])
        session = FeedSession(
            store, await store.select_recent(50), selected_id=selected, poll_interval=0.05
        )
        events = feed_events(session, selected, "UTC", AsyncMock(return_value=False))
        return store, session, events

    @pytest.mark.asyncio
    async def test_first_event_carries_current_feed(self):
        store, session, events = await self._open(1)

        first = _decode_event(await asyncio.wait_for(events.__anext__(), timeout=1))

        assert [e["id"] for e in first["emails"]] == [1]
        assert first["selected_id"] == 1
        assert first["detail_changed"] is False
        assert "First" in first["list_html"]
        await events.aclose()

    @pytest.mark.asyncio
    async def test_fallback_selection_marks_detail_changed(self):
        store, session, events = await self._open(999)

        first = _decode_event(await asyncio.wait_for(events.__anext__(), timeout=1))

        assert first["selected_id"] == 1
        assert first["detail_changed"] is True
        await events.aclose()

    @pytest.mark.asyncio
    async def test_inserted_email_arrives_without_moving_selection(self):
        store, session, events = await self._open(1)
        await asyncio.wait_for(events.__anext__(), timeout=1)

        await store.insert(_new("Second"))
        for _ in range(20):
            body = _decode_event(await asyncio.wait_for(events.__anext__(), timeout=1))
            if body["emails"][0]["id"] == 2:
                break

        assert [e["id"] for e in body["emails"]] == [2, 1]
        assert body["selected_id"] == 1
        assert body["detail_changed"] is False
        await events.aclose()

    @pytest.mark.asyncio
    async def test_closing_stream_closes_session(self):
        store, session, events = await self._open(1)
        await asyncio.wait_for(events.__anext__(), timeout=1)

        await events.aclose()
        await store.insert(_new("After close"))
        await asyncio.sleep(0.01)

        assert session.closed is True
        assert [r.id for r in session.feed] == [1]

    @pytest.mark.asyncio
    async def test_disconnect_ends_stream(self):
        store = InMemoryLogStore(rows=[_row(1, _ago(minutes=10))])
        session = FeedSession(store, [], poll_interval=3600)
        events = feed_events(session, None, "UTC", AsyncMock(return_value=True))

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(events.__anext__(), timeout=1)
        assert session.closed is True


class TestStreamEndpoint:
    def test_requires_auth(self, client):
        assert client.get("/api/emails/stream").status_code == 401

    def test_streams_feed_until_disconnect(self, client):
        with patch(
            "starlette.requests.Request.is_disconnected",
            AsyncMock(side_effect=[False, True]),
        ):
            response = client.get("/api/emails/stream?selected=1", headers=AUTH)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        events = [e for e in response.text.split("\n\n") if e]
        assert len(events) == 1
        body = _decode_event(events[0])
        assert [e["id"] for e in body["emails"]] == [2, 1]
        assert body["selected_id"] == 1


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class TestHealth:
    def test_health_db_ok(self, client):
        response = client.get("/health/db", headers=AUTH)
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": "reachable"}

    def test_health_db_failure(self):
        store = Mock()
        store.select_recent = AsyncMock(side_effect=PersistenceFailure("refused"))
        client = TestClient(create_app(SETTINGS, log_store=store))

        response = client.get("/health/db", headers=AUTH)

        assert response.status_code == 503
        assert "refused" in response.json()["detail"]
