"""
Log store adapters for the NovuWebhookLogs table.

LogStore is the only thing the ingestion and feed code talks to. Two
implementations:

  SupabaseLogStore  - production; async supabase client. Queries go through
                      PostgREST, inserts are pushed via Realtime
                      postgres_changes.
  InMemoryLogStore  - local development and tests; a list plus an
                      asyncio.Lock around writes.

Every adapter raises PersistenceFailure for failed insert/select/delete and
SubscriptionError when the insert channel cannot be opened.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from mailfeed.errors import PersistenceFailure, SubscriptionError
from mailfeed.models.webhook_log import NewWebhookRecord, WebhookRecord
from mailfeed.services.feed import parse_received_at

logger = logging.getLogger(__name__)

InsertCallback = Callable[[WebhookRecord], None]

_SELECT_COLUMNS = "id, received_at, headers, data"


class InsertSubscription:
    """Handle for a live insert subscription. close() is idempotent."""

    def __init__(self, release: Callable[[], Awaitable[None]]):
        self._release = release
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._release()


class LogStore(ABC):
    """Persistent, append-mostly table of webhook records."""

    @abstractmethod
    async def insert(self, record: NewWebhookRecord) -> int:
        """Persist a record and return its store-assigned id."""

    @abstractmethod
    async def select_recent(self, limit: int) -> list[WebhookRecord]:
        """Return up to `limit` records, newest received_at first."""

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete records received before `cutoff`; return how many went."""

    @abstractmethod
    async def subscribe_insert(self, callback: InsertCallback) -> InsertSubscription:
        """Deliver each newly inserted record to `callback`, at least once."""

    async def close(self) -> None:
        """Release the underlying client."""


def _records_from_rows(rows: Optional[list]) -> list[WebhookRecord]:
    records: list[WebhookRecord] = []
    for row in rows or []:
        record = WebhookRecord.from_row(row)
        if record is None:
            logger.warning(f"Skipping webhook log row without an integer id: {row!r}")
            continue
        records.append(record)
    return records


_UNDATED = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(record: WebhookRecord) -> tuple[bool, datetime]:
    received = parse_received_at(record.received_at)
    return (received is not None, received or _UNDATED)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryLogStore(LogStore):
    """
    Process-local store.

    received_at values are compared as parsed instants; rows without a
    usable timestamp sort last and are never swept.
    """

    def __init__(self, rows: Optional[list[dict]] = None):
        self._rows: list[dict] = []
        self._next_id = 1
        self._lock = asyncio.Lock()
        self._subscribers: list[InsertCallback] = []
        for row in rows or []:
            self._rows.append(dict(row))
            if isinstance(row.get("id"), int):
                self._next_id = max(self._next_id, row["id"] + 1)

    @property
    def rows(self) -> list[dict]:
        return list(self._rows)

    async def insert(self, record: NewWebhookRecord) -> int:
        async with self._lock:
            row = {"id": self._next_id, **record.to_row()}
            self._next_id += 1
            self._rows.append(row)

        stored = WebhookRecord.from_row(row)
        loop = asyncio.get_running_loop()
        for callback in list(self._subscribers):
            loop.call_soon(callback, stored)
        return row["id"]

    async def select_recent(self, limit: int) -> list[WebhookRecord]:
        records = _records_from_rows(self._rows)
        records.sort(key=_sort_key, reverse=True)
        return records[:limit]

    async def delete_older_than(self, cutoff: datetime) -> int:
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        async with self._lock:
            kept = []
            for row in self._rows:
                received = parse_received_at(row.get("received_at"))
                if received is None or received >= cutoff:
                    kept.append(row)
            removed = len(self._rows) - len(kept)
            self._rows = kept
        return removed

    async def subscribe_insert(self, callback: InsertCallback) -> InsertSubscription:
        self._subscribers.append(callback)

        async def release() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return InsertSubscription(release)


# ---------------------------------------------------------------------------
# Supabase store
# ---------------------------------------------------------------------------

def _record_from_change(payload: Any) -> Optional[WebhookRecord]:
    """
    Pull the inserted row out of a Realtime postgres_changes payload.

    realtime-py delivers {"data": {"record": {...}, "type": "INSERT", ...}};
    older clients used a flat {"new": {...}} / {"record": {...}} shape.
    """
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("record"), dict):
        row = data["record"]
    else:
        row = payload.get("new") or payload.get("record")
    return WebhookRecord.from_row(row)


class SupabaseLogStore(LogStore):
    def __init__(self, client: Any, table: str = "NovuWebhookLogs"):
        self._client = client
        self._table = table

    @classmethod
    async def connect(cls, url: str, key: str, table: str = "NovuWebhookLogs") -> "SupabaseLogStore":
        from mailfeed.db import create_supabase_client

        client = await create_supabase_client(url, key)
        return cls(client, table)

    async def insert(self, record: NewWebhookRecord) -> int:
        try:
            result = await self._client.table(self._table).insert(record.to_row()).execute()
        except Exception as exc:
            raise PersistenceFailure(f"Insert into {self._table} failed: {exc}") from exc

        if not result.data:
            raise PersistenceFailure(f"Insert into {self._table} returned no data")
        return result.data[0].get("id")

    async def select_recent(self, limit: int) -> list[WebhookRecord]:
        try:
            result = await (
                self._client.table(self._table)
                .select(_SELECT_COLUMNS)
                .order("received_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as exc:
            raise PersistenceFailure(f"Select from {self._table} failed: {exc}") from exc

        return _records_from_rows(result.data)

    async def delete_older_than(self, cutoff: datetime) -> int:
        cutoff_iso = cutoff.astimezone(timezone.utc).isoformat()
        try:
            result = await (
                self._client.table(self._table)
                .delete()
                .lt("received_at", cutoff_iso)
                .execute()
            )
        except Exception as exc:
            raise PersistenceFailure(f"Delete from {self._table} failed: {exc}") from exc

        return len(result.data or [])

    async def subscribe_insert(self, callback: InsertCallback) -> InsertSubscription:
        def on_change(payload: Any) -> None:
            record = _record_from_change(payload)
            if record is None:
                logger.warning(f"Ignoring realtime payload without a usable row: {payload!r}")
                return
            callback(record)

        try:
            channel = self._client.channel(f"novu-webhook-logs-{id(callback)}")
            channel.on_postgres_changes(
                "INSERT",
                schema="public",
                table=self._table,
                callback=on_change,
            )
            await channel.subscribe()
        except Exception as exc:
            raise SubscriptionError(f"Could not subscribe to {self._table} inserts: {exc}") from exc

        async def release() -> None:
            try:
                await self._client.remove_channel(channel)
            except Exception as exc:
                logger.warning(f"Failed to remove realtime channel: {exc}")

        return InsertSubscription(release)

    async def close(self) -> None:
        try:
            await self._client.remove_all_channels()
        except Exception as exc:
            logger.warning(f"Failed to close realtime channels: {exc}")
