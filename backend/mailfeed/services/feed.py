"""
Feed reconciliation.

The viewer gets records from three places: the initial snapshot, the
periodic poll, and realtime insert events. reconcile() turns any number of
those batches into one feed:

  1. concatenate the batches in order
  2. dedupe by id; a later occurrence replaces an earlier one
  3. drop records received before now - RETENTION_WINDOW
     (records with no / unparseable received_at are always kept)
  4. sort newest first; undated records go last, ties by id descending
  5. keep the first FEED_LIMIT

The function is pure: same inputs and `now`, same output, and feeding the
output back in returns it unchanged.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from mailfeed.models.webhook_log import WebhookRecord

FEED_LIMIT = 50
RETENTION_WINDOW = timedelta(days=3)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def parse_received_at(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Returns None for None, empty or unparseable values. Naive timestamps are
    taken to be UTC.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        # Out-of-range offsets near datetime.min/max cannot be converted to UTC
        return None


def _sort_key(record: WebhookRecord) -> tuple[bool, datetime, int]:
    received = parse_received_at(record.received_at)
    return (received is not None, received or _OLDEST, record.id)


def reconcile(
    *sources: Iterable[WebhookRecord],
    now: Optional[datetime] = None,
    limit: int = FEED_LIMIT,
) -> list[WebhookRecord]:
    """Merge record batches into a deduplicated, windowed, capped feed."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - RETENTION_WINDOW

    unique: dict[int, WebhookRecord] = {}
    for source in sources:
        for record in source:
            unique[record.id] = record

    retained = []
    for record in unique.values():
        received = parse_received_at(record.received_at)
        if received is None or received >= cutoff:
            retained.append(record)

    retained.sort(key=_sort_key, reverse=True)
    return retained[:limit]
