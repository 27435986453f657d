"""
Basic-auth edge gate.

Every path except the webhook endpoint requires an
``Authorization: Basic <base64(user:pass)>`` header matching
BASIC_AUTH_USER / BASIC_AUTH_PASS. The webhook is exempt because Novu
cannot supply interactive credentials; it is protected by its HMAC
signature instead.

When either credential is unset every gated request is rejected.
"""

import base64
import binascii
import hmac
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import PlainTextResponse

from mailfeed.config import Settings

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/novu/email-webhook"

_CHALLENGE = {"WWW-Authenticate": 'Basic realm="Secure Area"'}


def _decode_basic_credentials(authorization: Optional[str]) -> Optional[tuple[str, str]]:
    """
    Split a Basic Authorization header into (user, password).

    Returns None when the header is missing, uses another scheme, or does
    not decode to "user:password".
    """
    if not authorization:
        return None

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Basic":
        return None

    try:
        decoded = base64.b64decode(parts[1], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None

    user, sep, password = decoded.partition(":")
    if not sep:
        return None
    return user, password


def _matches(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def check_basic_auth(authorization: Optional[str], settings: Settings) -> bool:
    """Return True when the header carries the configured credentials."""
    if not settings.basic_auth_user or not settings.basic_auth_pass:
        return False

    credentials = _decode_basic_credentials(authorization)
    if credentials is None:
        return False

    user, password = credentials
    # Both comparisons always run
    user_ok = _matches(user, settings.basic_auth_user)
    pass_ok = _matches(password, settings.basic_auth_pass)
    return user_ok and pass_ok


def is_exempt(path: str) -> bool:
    return path.rstrip("/") == WEBHOOK_PATH


def basic_auth_middleware(settings: Settings):
    """Build the HTTP middleware enforcing the gate for `settings`."""
    if not settings.basic_auth_user or not settings.basic_auth_pass:
        logger.warning(
            "BASIC_AUTH_USER / BASIC_AUTH_PASS not configured; "
            "the viewer will reject every request"
        )

    async def middleware(request: Request, call_next):
        if is_exempt(request.url.path):
            return await call_next(request)

        if check_basic_auth(request.headers.get("authorization"), settings):
            return await call_next(request)

        return PlainTextResponse("Auth required", status_code=401, headers=_CHALLENGE)

    return middleware
