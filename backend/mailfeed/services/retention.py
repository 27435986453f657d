"""
Retention sweep for webhook logs.

Runs right before the viewer reads its initial snapshot. There is no
scheduler: a skipped sweep only delays cleanup, because reconcile()
applies the same window to everything it returns.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from mailfeed.errors import PersistenceFailure
from mailfeed.services.feed import RETENTION_WINDOW
from mailfeed.services.log_store import LogStore

logger = logging.getLogger(__name__)


async def purge_expired_logs(store: LogStore, now: Optional[datetime] = None) -> int:
    """
    Delete logs received before now - RETENTION_WINDOW.

    Returns the number of deleted rows, or 0 when the delete failed (the
    failure is logged, never raised).
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - RETENTION_WINDOW

    try:
        removed = await store.delete_older_than(cutoff)
    except PersistenceFailure as exc:
        logger.error(f"Failed to purge outdated Novu webhook logs: {exc}")
        return 0

    if removed:
        logger.info(f"Purged {removed} Novu webhook log(s) older than {cutoff.isoformat()}")
    return removed
