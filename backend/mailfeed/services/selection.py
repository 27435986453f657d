"""Selection controller: keep the viewed email id pointing into the feed."""

from typing import Optional, Sequence

from mailfeed.models.webhook_log import WebhookRecord


def resolve_selection(feed: Sequence[WebhookRecord], requested_id: Optional[int]) -> Optional[int]:
    """
    Return requested_id if it is still in the feed, otherwise the id of the
    newest entry, or None for an empty feed.
    """
    if requested_id is not None and any(record.id == requested_id for record in feed):
        return requested_id
    return feed[0].id if feed else None
