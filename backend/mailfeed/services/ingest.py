"""
Webhook ingestion.

ingest_webhook() handles one Novu delivery end to end:

  1. verify x-novu-signature over the raw body     -> 401 on mismatch
  2. parse the body as a JSON object               -> 500 if malformed
  3. insert a NovuWebhookLogs row                  -> 200

A failed insert is logged but still answered with 200: Novu should not
retry a delivery just because local persistence failed. Retried
deliveries are not de-duplicated.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from mailfeed.errors import InvalidSignature, MalformedPayload, PersistenceFailure
from mailfeed.models.webhook_log import CapturedHeaders, NewWebhookRecord, WebhookResponse
from mailfeed.services.log_store import LogStore
from mailfeed.services.signature import verify_signature

logger = logging.getLogger(__name__)


class IngestStatus(str, Enum):
    ACCEPTED = "accepted"
    UNAUTHORIZED = "unauthorized"
    SERVER_ERROR = "server_error"


_STATUS_CODES = {
    IngestStatus.ACCEPTED: 200,
    IngestStatus.UNAUTHORIZED: 401,
    IngestStatus.SERVER_ERROR: 500,
}


@dataclass
class IngestOutcome:
    status: IngestStatus
    error: Optional[str] = None
    record_id: Optional[int] = None

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.status]

    def to_response(self) -> WebhookResponse:
        return WebhookResponse(ok=self.status is IngestStatus.ACCEPTED, error=self.error)


def _parse_payload(raw_body: bytes) -> dict:
    """Decode the body as a JSON object or raise MalformedPayload."""
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedPayload(f"Invalid JSON body: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedPayload(
            f"Expected a JSON object, got {type(payload).__name__}"
        )
    return payload


def _check_signature(raw_body: bytes, signature: str, secret: str) -> None:
    if not secret:
        logger.warning(
            "NOVU_WEBHOOK_SECRET is not configured; all webhook requests will be rejected"
        )
        raise InvalidSignature("webhook secret not configured")
    if not verify_signature(raw_body, signature, secret):
        raise InvalidSignature("invalid signature")


async def ingest_webhook(
    raw_body: bytes,
    headers: CapturedHeaders,
    store: LogStore,
    secret: str,
) -> IngestOutcome:
    """Verify, parse and persist one webhook delivery."""
    try:
        _check_signature(raw_body, headers.signature, secret)
    except InvalidSignature:
        logger.warning(
            f"Invalid signature on Novu webhook (user-agent={headers.user_agent!r})"
        )
        return IngestOutcome(IngestStatus.UNAUTHORIZED, error="invalid signature")

    try:
        payload = _parse_payload(raw_body)
    except MalformedPayload as exc:
        logger.error(f"Verified Novu webhook has a malformed body: {exc}")
        return IngestOutcome(IngestStatus.SERVER_ERROR, error=str(exc))

    record = NewWebhookRecord(
        received_at=datetime.now(timezone.utc).isoformat(),
        headers=headers,
        data=payload,
    )

    try:
        record_id = await store.insert(record)
    except PersistenceFailure as exc:
        logger.error(f"Failed to persist Novu webhook payload: {exc}")
        return IngestOutcome(IngestStatus.ACCEPTED)

    logger.info(f"Stored Novu webhook log {record_id} (subject={payload.get('subject')!r})")
    return IngestOutcome(IngestStatus.ACCEPTED, record_id=record_id)
