"""
Live feed session for one viewer.

A FeedSession owns everything one open viewer needs:

  - the snapshot it was opened with
  - every record received since (poll results and realtime inserts)
  - the poll timer and the insert subscription
  - the selected email id

Both producers just append to the accumulated records; the visible feed is
always reconcile(snapshot, accumulated), so the order in which polls and
inserts land does not change the final state. There is no shared mutable
merge state and no locking.

Teardown (close) cancels the timer and releases the subscription. A poll
that is already in flight is left to finish; its result is dropped.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterable, Optional

from mailfeed.errors import PersistenceFailure, SubscriptionError
from mailfeed.models.webhook_log import FeedState, WebhookRecord
from mailfeed.services.feed import FEED_LIMIT, reconcile
from mailfeed.services.log_store import InsertSubscription, LogStore
from mailfeed.services.selection import resolve_selection

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedSession:
    def __init__(
        self,
        store: LogStore,
        snapshot: Iterable[WebhookRecord] = (),
        selected_id: Optional[int] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Clock = _utcnow,
    ):
        self._store = store
        self._snapshot = list(snapshot)
        self._accumulated: list[WebhookRecord] = []
        self._requested_id = selected_id
        self._poll_interval = poll_interval
        self._clock = clock

        self._closed = False
        self._timer: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()
        self._subscription: Optional[InsertSubscription] = None
        self._changed = asyncio.Event()

        self._state = FeedState()
        self._rebuild()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def feed(self) -> list[WebhookRecord]:
        return self._state.emails

    @property
    def selected_id(self) -> Optional[int]:
        return self._state.selected_id

    @property
    def selected(self) -> Optional[WebhookRecord]:
        return self._state.selected

    @property
    def closed(self) -> bool:
        return self._closed

    def _rebuild(self) -> None:
        now = self._clock()
        # Accumulated records never exceed what the feed can show
        self._accumulated = reconcile(self._accumulated, now=now, limit=FEED_LIMIT)
        emails = reconcile(self._snapshot, self._accumulated, now=now)
        selected_id = resolve_selection(emails, self._requested_id)
        self._requested_id = selected_id
        self._state = FeedState(emails=emails, selected_id=selected_id)
        self._changed.set()

    def select(self, record_id: Optional[int]) -> Optional[int]:
        """Explicit user choice. Returns the id that is actually selected."""
        self._requested_id = record_id
        self._rebuild()
        return self.selected_id

    def apply_poll(self, records: Iterable[WebhookRecord]) -> None:
        if self._closed:
            return
        self._accumulated = self._accumulated + list(records)
        self._rebuild()

    def apply_push(self, record: WebhookRecord) -> None:
        if self._closed:
            return
        self._accumulated = self._accumulated + [record]
        self._rebuild()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def refresh(self) -> None:
        """Poll the store once. Failures keep the last good state."""
        try:
            records = await self._store.select_recent(FEED_LIMIT)
        except PersistenceFailure as exc:
            logger.error(f"Failed to refresh Novu webhook logs: {exc}")
            return
        except Exception as exc:
            logger.exception(f"Unexpected error refreshing Novu webhook logs: {exc}")
            return

        if self._closed:
            logger.debug("Discarding poll result for a closed feed session")
            return
        self.apply_poll(records)

    def _spawn_refresh(self) -> None:
        task = asyncio.create_task(self.refresh())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self._spawn_refresh()

    async def start(self) -> None:
        """Subscribe to inserts, poll once now, then every poll_interval."""
        if self._closed:
            raise RuntimeError("FeedSession is closed")

        try:
            self._subscription = await self._store.subscribe_insert(self.apply_push)
        except SubscriptionError as exc:
            logger.warning(f"Realtime subscription unavailable, polling only: {exc}")

        self._spawn_refresh()
        self._timer = asyncio.create_task(self._tick())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._changed.set()

        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

    async def states(self) -> AsyncIterator[FeedState]:
        """Yield the current state, then one state per rebuild until closed."""
        self._changed.clear()
        yield self._state
        while not self._closed:
            await self._changed.wait()
            self._changed.clear()
            if self._closed:
                break
            yield self._state
