"""
Novu email webhook router.

Endpoints:
  POST /api/novu/email-webhook  - Novu delivery (auth: x-novu-signature HMAC)

Responses:
  200 {"ok": true}
  401 {"ok": false, "error": "invalid signature"}
  500 {"ok": false, "error": "<message>"}
  503 {"ok": false, "error": "Log store unavailable"}

The raw body is read before anything else so the signature is checked
against the exact bytes Novu signed.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from mailfeed.auth import WEBHOOK_PATH
from mailfeed.config import Settings
from mailfeed.deps import get_log_store, get_settings
from mailfeed.models.webhook_log import CapturedHeaders, WebhookResponse
from mailfeed.services.ingest import ingest_webhook

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(WEBHOOK_PATH)
async def receive_novu_webhook(
    request: Request,
    x_novu_signature: Optional[str] = Header(None),
    content_type: Optional[str] = Header(None),
    user_agent: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    headers = CapturedHeaders(
        signature=x_novu_signature or "",
        content_type=content_type or "",
        user_agent=user_agent or "",
    )
    logger.info(
        f"Novu webhook received (content-type={headers.content_type!r}, "
        f"user-agent={headers.user_agent!r})"
    )

    try:
        store = get_log_store(request)
        raw_body = await request.body()
        outcome = await ingest_webhook(
            raw_body, headers, store, settings.novu_webhook_secret
        )
    except HTTPException as exc:
        logger.error(f"Webhook rejected: {exc.detail}")
        body = WebhookResponse(ok=False, error=exc.detail)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))
    except Exception as exc:
        logger.exception(f"Webhook processing error: {exc}")
        body = WebhookResponse(ok=False, error=str(exc))
        return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))

    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.to_response().model_dump(exclude_none=True),
    )
