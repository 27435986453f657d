"""
Error taxonomy for the webhook ingestion and feed paths.

  InvalidSignature    - x-novu-signature does not match the raw body (401)
  MalformedPayload    - body is not a JSON object despite a valid signature (500)
  PersistenceFailure  - a store insert / select / delete failed
  SubscriptionError   - the realtime insert channel could not be opened

Only the first two ever reach the webhook caller. Persistence and
subscription problems are logged and the caller keeps going.
"""


class MailfeedError(Exception):
    """Base class for all mailfeed errors."""


class InvalidSignature(MailfeedError):
    pass


class MalformedPayload(MailfeedError):
    pass


class PersistenceFailure(MailfeedError):
    pass


class SubscriptionError(MailfeedError):
    pass
