"""
Novu webhook signature verification.

Novu signs webhook deliveries with HMAC-SHA256 over the raw request body,
keyed by the webhook secret, and sends the hex digest in x-novu-signature.
No timestamp is mixed into the signed message.
"""

import hashlib
import hmac
from typing import Optional


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 of raw_body keyed by secret."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, provided_signature: Optional[str], secret: str) -> bool:
    """
    Verify a Novu webhook signature.

    Args:
        raw_body: Exact request body bytes, before any JSON parsing.
        provided_signature: x-novu-signature header value (hex digest).
        secret: Webhook secret configured in Novu.

    Returns False for a missing/empty signature or secret, a length mismatch
    or any non-ASCII input. Never raises.
    """
    if not provided_signature or not secret:
        return False

    expected = compute_signature(raw_body, secret)
    if len(provided_signature) != len(expected):
        return False

    try:
        provided = provided_signature.encode("ascii")
    except UnicodeEncodeError:
        return False

    return hmac.compare_digest(provided, expected.encode("ascii"))
